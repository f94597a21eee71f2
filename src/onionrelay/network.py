# src/onionrelay/network.py
"""
Networking module for onionrelay.

Delivers wire strings between participants. Every participant (relay or
user) is reached by an integer address, which for the HTTP transport is the
port it listens on.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import aiohttp

from .robustness import ForwardingFailure, MissingMessage, OnionError, log_with_context

logger = logging.getLogger(__name__)

MESSAGE_PATH = "/message"


class MessageKind(Enum):
    ABSENT = "absent"
    EMPTY = "empty"
    NON_EMPTY = "non_empty"


@dataclass(frozen=True)
class MessageInput:
    """
    The ``message`` field of an inbound request.

    A missing key or JSON ``null`` is absent and gets rejected; ``""`` is a
    valid empty payload and is carried through unchanged.
    """

    kind: MessageKind
    value: str | None = None

    @classmethod
    def from_value(cls, value: Any) -> MessageInput:
        if value is None:
            return cls(MessageKind.ABSENT)
        if not isinstance(value, str):
            raise MissingMessage("Message must be a string")
        if value == "":
            return cls(MessageKind.EMPTY, "")
        return cls(MessageKind.NON_EMPTY, value)

    @classmethod
    def from_body(cls, body: Any) -> MessageInput:
        if not isinstance(body, dict):
            return cls(MessageKind.ABSENT)
        return cls.from_value(body.get("message"))

    def require(self) -> str:
        if self.kind is MessageKind.ABSENT:
            raise MissingMessage()
        return self.value


class NetworkTransport:
    """Abstract base for network transport implementations."""

    async def start(self):
        pass

    async def stop(self):
        pass

    async def send(self, address: int, message: str) -> dict[str, Any]:
        raise NotImplementedError


class HttpTransport(NetworkTransport):
    """POSTs ``{"message": ...}`` to ``http://{host}:{address}/message``."""

    def __init__(self, host: str = "localhost", session: aiohttp.ClientSession | None = None):
        self.host = host
        self.session = session
        self._owns_session = session is None

    async def start(self):
        if self.session is None:
            self.session = aiohttp.ClientSession()
            self._owns_session = True

    async def stop(self):
        if self.session is not None and self._owns_session:
            await self.session.close()
            self.session = None

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    def url_for(self, address: int) -> str:
        return f"http://{self.host}:{address}{MESSAGE_PATH}"

    async def send(self, address: int, message: str) -> dict[str, Any]:
        if self.session is None:
            raise RuntimeError("Transport not started")
        url = self.url_for(address)
        try:
            async with self.session.post(url, json={"message": message}) as resp:
                if resp.status >= 400:
                    text = await resp.text()
                    raise ForwardingFailure(address, f"HTTP error: {resp.status} {text}", status=resp.status)
                if resp.content_type == "application/json":
                    return await resp.json()
                return {"status": await resp.text()}
        except (aiohttp.ClientError, asyncio.TimeoutError, json.JSONDecodeError) as e:
            reason = str(e) or type(e).__name__
            log_with_context(f"Send to {url} failed: {reason}", "warning", {"address": address})
            raise ForwardingFailure(address, reason) from e


Handler = Callable[[str], Awaitable[dict[str, Any]]]


class LocalTransport(NetworkTransport):
    """In-process transport: addresses map directly to async receive handlers."""

    def __init__(self):
        self.endpoints: dict[int, Handler] = {}

    def register(self, address: int, handler: Handler) -> None:
        if address in self.endpoints:
            raise ValueError(f"Address {address} already bound")
        self.endpoints[address] = handler

    def unregister(self, address: int) -> None:
        self.endpoints.pop(address, None)

    async def send(self, address: int, message: str) -> dict[str, Any]:
        handler = self.endpoints.get(address)
        if handler is None:
            raise ForwardingFailure(address, "no participant listening")
        try:
            return await handler(message)
        except OnionError as e:
            raise ForwardingFailure(address, str(e)) from e
