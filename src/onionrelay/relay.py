"""
onionrelay.relay - per-hop peeling of onion layers.

A relay holds exactly one key pair. For each inbound message it peels the
single layer addressed to it and either forwards the remainder to the next
address or, when no address is encoded, delivers it locally. It never sees
the circuit length, its position in the path, or any other layer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from . import layered_crypto
from .crypto import KeyPair, export_private_key, export_public_key, generate_key_pair
from .network import MessageInput, NetworkTransport
from .robustness import ForwardingFailure, MalformedLayer, log_with_context

logger = logging.getLogger(__name__)


class RelayPhase(Enum):
    IDLE = "idle"
    RECEIVED = "received"
    DECODING = "decoding"
    FORWARDING = "forwarding"
    DELIVERING = "delivering"
    REJECTED = "rejected"


class HopKind(Enum):
    RELAY = "relay"
    USER = "user"


@dataclass
class NodeState:
    """Last-value diagnostics; not used by the protocol itself."""

    last_received_encrypted_message: str | None = None
    last_received_decrypted_message: str | None = None
    last_message_destination: int | None = None


@dataclass
class RelayContext:
    """Identity of one relay, owned by whoever instantiates the relay."""

    node_id: int
    key_pair: KeyPair
    address: int
    state: NodeState = field(default_factory=NodeState)

    @classmethod
    def create(cls, node_id: int, base_port: int) -> RelayContext:
        return cls(node_id=node_id, key_pair=generate_key_pair(), address=base_port + node_id)

    @property
    def public_key_b64(self) -> str:
        return export_public_key(self.key_pair.public_key)


@dataclass(frozen=True)
class RelayOutcome:
    delivered: bool
    message: str
    next_address: int | None = None
    next_hop_kind: HopKind | None = None
    response: dict[str, Any] | None = None

    @property
    def status(self) -> str:
        if self.delivered:
            return "Final message reached the last node"
        return "Message decrypted and forwarded successfully"


class OnionRelay:
    """Peels one layer per inbound message and forwards or delivers the rest."""

    def __init__(self, context: RelayContext, transport: NetworkTransport, recipient_threshold: int):
        self.context = context
        self.transport = transport
        self.recipient_threshold = recipient_threshold
        self.phase = RelayPhase.IDLE

    @property
    def node_id(self) -> int:
        return self.context.node_id

    @property
    def state(self) -> NodeState:
        return self.context.state

    def is_recipient_address(self, address: int) -> bool:
        return address >= self.recipient_threshold

    def private_key_export(self) -> str:
        return export_private_key(self.context.key_pair.private_key)

    async def receive(self, message: MessageInput | str | None) -> RelayOutcome:
        """
        Handle one inbound wire message.

        Raises:
            MissingMessage: the message is absent (an empty string is fine).
            MalformedLayer: the layer could not be decoded; state is untouched.
            ForwardingFailure: the next hop could not be reached; the recorded
                state is kept.
        """
        if not isinstance(message, MessageInput):
            message = MessageInput.from_value(message)
        wire = message.require()

        self.phase = RelayPhase.RECEIVED
        logger.info(f"[Node {self.node_id}] Message received, decrypting...")

        self.phase = RelayPhase.DECODING
        try:
            decoded = layered_crypto.decode_layer(wire, self.context.key_pair.private_key)
        except MalformedLayer as e:
            self.phase = RelayPhase.REJECTED
            log_with_context(
                f"[Node {self.node_id}] Rejected layer: {e}",
                "warning",
                {"node_id": self.node_id, **e.context},
            )
            raise

        self.state.last_received_encrypted_message = wire
        self.state.last_received_decrypted_message = decoded.remainder
        self.state.last_message_destination = decoded.next_address

        if decoded.next_address is None:
            self.phase = RelayPhase.DELIVERING
            logger.info(f"[Node {self.node_id}] Final message reached, no further forwarding.")
            return RelayOutcome(delivered=True, message=decoded.remainder)

        self.phase = RelayPhase.FORWARDING
        kind = HopKind.USER if self.is_recipient_address(decoded.next_address) else HopKind.RELAY
        logger.info(f"[Node {self.node_id}] Forwarding message to {kind.value} at {decoded.next_address}")
        if decoded.remainder == "":
            logger.debug(f"[Node {self.node_id}] Next message is empty, but will still be forwarded.")

        try:
            response = await self.transport.send(decoded.next_address, decoded.remainder)
        except ForwardingFailure as e:
            log_with_context(
                f"[Node {self.node_id}] Forwarding failed: {e}",
                "error",
                {"node_id": self.node_id, **e.context},
            )
            raise

        return RelayOutcome(
            delivered=False,
            message=decoded.remainder,
            next_address=decoded.next_address,
            next_hop_kind=kind,
            response=response,
        )
