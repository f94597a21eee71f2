# src/onionrelay/registry.py
"""
Registry module for onionrelay.

A plain register of relay id -> exported public key. No cryptography happens
here; the origin reads the list when it builds a circuit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import aiohttp

from .circuit import Participant
from .robustness import DuplicateNode, ErrorType, OnionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NodeEntry:
    node_id: int
    pub_key: str

    def to_dict(self) -> dict:
        return {"nodeId": self.node_id, "pubKey": self.pub_key}

    @classmethod
    def from_dict(cls, data: dict) -> NodeEntry:
        return cls(node_id=data["nodeId"], pub_key=data["pubKey"])

    def as_participant(self, base_port: int) -> Participant:
        return Participant(node_id=self.node_id, pub_key=self.pub_key, address=base_port + self.node_id)


class Directory:
    """In-memory node directory."""

    def __init__(self):
        self._nodes: list[NodeEntry] = []

    def register(self, node_id: int, pub_key: str) -> NodeEntry:
        # bool is an int subclass but never a valid id
        if not isinstance(node_id, int) or isinstance(node_id, bool) or not pub_key:
            raise ValueError("Missing nodeId or public key")
        if any(node.node_id == node_id for node in self._nodes):
            raise DuplicateNode(node_id)
        entry = NodeEntry(node_id=node_id, pub_key=pub_key)
        self._nodes.append(entry)
        logger.info(f"Node {node_id} registered")
        return entry

    def list_participants(self) -> list[NodeEntry]:
        return list(self._nodes)

    def __len__(self) -> int:
        return len(self._nodes)


class RegistryClient:
    """Client for a registry served over HTTP (see ``server.create_registry_app``)."""

    def __init__(self, base_url: str, session: aiohttp.ClientSession | None = None):
        self.base_url = base_url.rstrip("/")
        self.session = session
        self._owns_session = session is None

    async def __aenter__(self):
        if self.session is None:
            self.session = aiohttp.ClientSession()
            self._owns_session = True
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if self.session is not None and self._owns_session:
            await self.session.close()
            self.session = None

    async def register(self, node_id: int, pub_key: str) -> None:
        url = f"{self.base_url}/registerNode"
        try:
            async with self.session.post(url, json={"nodeId": node_id, "pubKey": pub_key}) as resp:
                if resp.status == 200:
                    logger.info(f"Node {node_id} registered successfully.")
                    return
                data = await resp.json()
                error = data.get("error", "")
        except aiohttp.ClientError as e:
            raise OnionError(f"Failed to register node {node_id}: {e}", ErrorType.NETWORK) from e
        if error == "Node is already registered":
            raise DuplicateNode(node_id)
        raise OnionError(
            f"Failed to register node {node_id}: {resp.status} {error}",
            ErrorType.NETWORK,
            {"status": resp.status},
        )

    async def list_participants(self) -> list[NodeEntry]:
        url = f"{self.base_url}/getNodeRegistry"
        try:
            async with self.session.get(url) as resp:
                resp.raise_for_status()
                data = await resp.json()
        except aiohttp.ClientError as e:
            raise OnionError(f"Failed to fetch node registry: {e}", ErrorType.NETWORK) from e
        return [NodeEntry.from_dict(node) for node in data.get("nodes", [])]
