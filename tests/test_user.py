"""
End-to-end tests: users sending through relays over the in-process transport.
"""

import random

import pytest

from onionrelay.config import NetworkConfig
from onionrelay.relay import RelayPhase
from onionrelay.robustness import ErrorType, ForwardingFailure, InsufficientParticipants, MissingMessage, OnionError
from onionrelay.simulation import LocalNetwork


@pytest.fixture
def local(relay_contexts):
    net = LocalNetwork(network=NetworkConfig(), rng=random.Random(11))
    for ctx in relay_contexts:
        net.add_relay(ctx.node_id, ctx)
    net.add_user(0)
    net.add_user(1)
    return net


@pytest.mark.asyncio
async def test_message_reaches_recipient(local):
    alice, bob = local.users[0], local.users[1]
    circuit = await alice.send_message("hello", bob.user_id)

    assert bob.state.last_received_message == "hello"
    assert alice.state.last_sent_message == "hello"
    assert alice.state.last_circuit == circuit
    assert len(circuit) == 3
    assert len(set(circuit)) == 3

    entry, middle, exit_ = (local.relays[node_id] for node_id in circuit)
    assert entry.state.last_message_destination == middle.context.address
    assert middle.state.last_message_destination == exit_.context.address
    assert exit_.state.last_message_destination == bob.address
    assert exit_.state.last_received_decrypted_message == "hello"
    assert all(r.phase == RelayPhase.FORWARDING for r in (entry, middle, exit_))


@pytest.mark.asyncio
async def test_empty_message_is_carried_through(local):
    alice, bob = local.users[0], local.users[1]
    await alice.send_message("", bob.user_id)
    assert bob.state.last_received_message == ""
    assert alice.state.last_sent_message == ""


@pytest.mark.asyncio
async def test_unused_relays_see_nothing(local):
    alice, bob = local.users[0], local.users[1]
    circuit = await alice.send_message("hello", bob.user_id)
    idle = [r for node_id, r in local.relays.items() if node_id not in circuit]
    assert len(idle) == 1
    assert idle[0].state.last_received_encrypted_message is None


@pytest.mark.asyncio
async def test_insufficient_relays(relay_contexts):
    net = LocalNetwork(network=NetworkConfig())
    for ctx in relay_contexts[:2]:
        net.add_relay(ctx.node_id, ctx)
    alice = net.add_user(0)
    net.add_user(1)

    with pytest.raises(InsufficientParticipants):
        await alice.send_message("hello", 1)
    assert alice.state.last_sent_message is None
    assert alice.state.last_circuit is None
    assert all(r.state.last_received_encrypted_message is None for r in net.relays.values())


@pytest.mark.asyncio
async def test_unknown_recipient_is_forwarding_failure(local):
    alice = local.users[0]
    with pytest.raises(ForwardingFailure):
        await alice.send_message("hello", 42)
    assert alice.state.last_sent_message is None


@pytest.mark.asyncio
async def test_seeded_users_pick_same_circuit(relay_contexts):
    circuits = []
    for _ in range(2):
        net = LocalNetwork(network=NetworkConfig(), rng=random.Random(99))
        for ctx in relay_contexts:
            net.add_relay(ctx.node_id, ctx)
        net.add_user(0)
        net.add_user(1)
        circuits.append(await net.users[0].send_message("hi", 1))
    assert circuits[0] == circuits[1]


def test_user_receive(local):
    bob = local.users[1]
    assert bob.receive("") == ""
    assert bob.state.last_received_message == ""
    with pytest.raises(MissingMessage):
        bob.receive(None)
    assert bob.state.last_received_message == ""


def test_user_address(local):
    assert local.users[1].address == NetworkConfig().base_user_port + 1


@pytest.mark.asyncio
async def test_unusable_registered_key_fails_before_sending(relay_contexts):
    net = LocalNetwork(network=NetworkConfig())
    for ctx in relay_contexts[:2]:
        net.add_relay(ctx.node_id, ctx)
    net.directory.register(99, "not-a-key")
    alice = net.add_user(0)
    net.add_user(1)

    with pytest.raises(OnionError) as exc_info:
        await alice.send_message("hi", 1)
    assert exc_info.value.error_type == ErrorType.CRYPTO
    assert alice.state.last_sent_message is None
    assert all(r.state.last_received_encrypted_message is None for r in net.relays.values())
