"""
In-process overlay: registry, relays and users wired through a LocalTransport.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field

from .config import NetworkConfig
from .network import LocalTransport
from .registry import Directory
from .relay import OnionRelay, RelayContext
from .user import OnionUser

logger = logging.getLogger(__name__)


@dataclass
class LocalNetwork:
    network: NetworkConfig
    directory: Directory = field(default_factory=Directory)
    transport: LocalTransport = field(default_factory=LocalTransport)
    relays: dict[int, OnionRelay] = field(default_factory=dict)
    users: dict[int, OnionUser] = field(default_factory=dict)
    rng: random.Random = field(default_factory=random.Random)

    def add_relay(self, node_id: int, context: RelayContext | None = None) -> OnionRelay:
        context = context or RelayContext.create(node_id, self.network.base_onion_router_port)
        relay = OnionRelay(context, self.transport, self.network.recipient_threshold)
        self.directory.register(node_id, context.public_key_b64)

        async def handler(message: str):
            outcome = await relay.receive(message)
            return {"status": outcome.status}

        self.transport.register(context.address, handler)
        self.relays[node_id] = relay
        return relay

    def add_user(self, user_id: int) -> OnionUser:
        user = OnionUser(user_id, self.directory, self.transport, network=self.network, rng=self.rng)

        async def handler(message: str):
            user.receive(message)
            return {"status": "success"}

        self.transport.register(user.address, handler)
        self.users[user_id] = user
        return user


def build_local_network(
    relay_count: int,
    user_count: int = 2,
    network: NetworkConfig | None = None,
    seed: int | None = None,
) -> LocalNetwork:
    local = LocalNetwork(network=network if network is not None else NetworkConfig(), rng=random.Random(seed))
    for node_id in range(relay_count):
        local.add_relay(node_id)
    for user_id in range(user_count):
        local.add_user(user_id)
    logger.info(f"Local network ready: {relay_count} relays, {user_count} users")
    return local
