"""
onionrelay.user - the participants at either end of a circuit.

A user builds onions as the origin and receives final plaintext as the
recipient. Users are not in the directory; only relays are.
"""

from __future__ import annotations

import inspect
import logging
import random
from dataclasses import dataclass, field

from .circuit import build_circuit
from .config import NetworkConfig
from .network import MessageInput, NetworkTransport
from .robustness import log_with_context

logger = logging.getLogger(__name__)


@dataclass
class UserState:
    last_received_message: str | None = None
    last_sent_message: str | None = None
    last_circuit: list[int] | None = field(default=None)


class OnionUser:
    def __init__(
        self,
        user_id: int,
        directory,
        transport: NetworkTransport,
        network: NetworkConfig | None = None,
        rng: random.Random | None = None,
    ):
        """
        Args:
            user_id: Offset of this user's address from ``base_user_port``.
            directory: Anything with ``list_participants()`` returning node
                entries, sync (``Directory``) or async (``RegistryClient``).
            transport: Used to hand the onion to the entry relay.
            network: Port layout; defaults to ``NetworkConfig()``.
            rng: Source for path selection; seed it for reproducible circuits.
        """
        self.user_id = user_id
        self.directory = directory
        self.transport = transport
        self.network = network if network is not None else NetworkConfig()
        self.rng = rng or random.Random()
        self.state = UserState()

    @property
    def address(self) -> int:
        return self.network.base_user_port + self.user_id

    def receive(self, message: MessageInput | str | None) -> str:
        if not isinstance(message, MessageInput):
            message = MessageInput.from_value(message)
        text = message.require()
        logger.info(f"[User {self.user_id}] Received message: {'<EMPTY MESSAGE>' if text == '' else text}")
        self.state.last_received_message = text
        return text

    async def _participants(self):
        entries = self.directory.list_participants()
        if inspect.isawaitable(entries):
            entries = await entries
        return [entry.as_participant(self.network.base_onion_router_port) for entry in entries]

    async def send_message(self, message: str, destination_user_id: int) -> list[int]:
        """
        Send ``message`` to another user over a fresh 3-relay circuit.

        Returns the circuit's node ids. ``InsufficientParticipants`` is raised
        before any encryption; ``ForwardingFailure`` if the entry relay (or any
        hop behind it) fails. State is only updated on success.
        """
        logger.info(f'[User {self.user_id}] Sending message: "{message}" to User {destination_user_id}')
        participants = await self._participants()
        final_address = self.network.base_user_port + destination_user_id
        circuit, onion = build_circuit(message, participants, final_address, rng=self.rng)

        log_with_context(
            f"[User {self.user_id}] Forwarding encrypted message to node {circuit.node_ids[0]}",
            "info",
            {"circuit": circuit.node_ids, "entry_address": circuit.entry_address},
        )
        await self.transport.send(circuit.entry_address, onion)

        self.state.last_sent_message = message
        self.state.last_circuit = circuit.node_ids
        return circuit.node_ids
