"""
Unit tests for circuit module.
"""

import random

import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from onionrelay import circuit as circuit_module
from onionrelay.circuit import (
    CIRCUIT_LENGTH,
    Circuit,
    Participant,
    build_circuit,
    build_onion,
    select_path,
)
from onionrelay.crypto import export_public_key, generate_symmetric_key
from onionrelay.layered_crypto import DecodedLayer, decode_layer
from onionrelay.robustness import ErrorType, InsufficientParticipants, MalformedLayer, OnionError


def _private_keys(relay_contexts):
    return {ctx.node_id: ctx.key_pair.private_key for ctx in relay_contexts}


def test_select_path_picks_distinct_relays(participants):
    path = select_path(participants, rng=random.Random(7))
    assert len(path) == CIRCUIT_LENGTH
    assert len({p.node_id for p in path}) == CIRCUIT_LENGTH
    assert all(p in participants for p in path)


def test_select_path_is_reproducible_with_seed(participants):
    first = select_path(participants, rng=random.Random(42))
    second = select_path(participants, rng=random.Random(42))
    assert first == second


def test_select_path_covers_every_relay(participants):
    rng = random.Random(1)
    seen = set()
    for _ in range(50):
        seen.update(p.node_id for p in select_path(participants, rng=rng))
    assert seen == {p.node_id for p in participants}


def test_select_path_insufficient_participants(participants):
    with pytest.raises(InsufficientParticipants) as exc_info:
        select_path(participants[:2])
    assert exc_info.value.available == 2
    assert exc_info.value.required == 3


def test_select_path_ignores_duplicate_ids(participants):
    p0, p1 = participants[0], participants[1]
    with pytest.raises(InsufficientParticipants):
        select_path([p0, p0, p1])


def test_build_onion_round_trip(participants, relay_contexts):
    keys = _private_keys(relay_contexts)
    path = participants[:3]
    onion = build_onion("hello", path, 9001)

    first = decode_layer(onion, keys[path[0].node_id])
    assert first.next_address == path[1].address

    second = decode_layer(first.remainder, keys[path[1].node_id])
    assert second.next_address == path[2].address

    third = decode_layer(second.remainder, keys[path[2].node_id])
    assert third == DecodedLayer(next_address=9001, remainder="hello")


def test_build_onion_each_layer_shrinks(participants, relay_contexts):
    keys = _private_keys(relay_contexts)
    path = participants[1:4]
    onion = build_onion("payload", path, 5000)
    sizes = [len(onion)]
    current = onion
    for hop in path[:2]:
        current = decode_layer(current, keys[hop.node_id]).remainder
        sizes.append(len(current))
    assert sizes == sorted(sizes, reverse=True)


def test_build_onion_empty_plaintext(participants, relay_contexts):
    keys = _private_keys(relay_contexts)
    path = participants[:3]
    current = build_onion("", path, 9001)
    for hop in path:
        decoded = decode_layer(current, keys[hop.node_id])
        current = decoded.remainder
    assert decoded == DecodedLayer(next_address=9001, remainder="")


def test_build_onion_uses_one_fresh_key_per_hop(participants):
    issued = []

    def factory():
        key = generate_symmetric_key()
        issued.append(key)
        return key

    build_onion("hello", participants[:3], 9001, key_factory=factory)
    assert len(issued) == 3
    assert len(set(issued)) == 3


def test_build_onion_layers_only_open_for_their_relay(participants, relay_contexts):
    keys = _private_keys(relay_contexts)
    path = participants[:3]
    onion = build_onion("hello", path, 9001)
    # the middle relay cannot open the outer layer
    with pytest.raises(MalformedLayer):
        decode_layer(onion, keys[path[1].node_id])


def test_build_onion_rejects_wrong_path_length(participants):
    with pytest.raises(ValueError):
        build_onion("hello", participants[:2], 9001)
    with pytest.raises(ValueError):
        build_onion("hello", participants[:4], 9001)


def test_build_onion_rejects_repeated_relay(participants):
    p0, p1 = participants[0], participants[1]
    with pytest.raises(ValueError):
        build_onion("hello", [p0, p1, p0], 9001)


def test_build_circuit_fails_before_encrypting(participants, monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("no layer may be encoded")

    monkeypatch.setattr(circuit_module, "encode_layer", fail)
    with pytest.raises(InsufficientParticipants):
        build_circuit("hello", participants[:2], 9001)


def test_build_circuit_returns_path_and_onion(participants, relay_contexts):
    keys = _private_keys(relay_contexts)
    circuit, onion = build_circuit("hi", participants, 9001, rng=random.Random(3))
    assert isinstance(circuit, Circuit)
    assert len(circuit.node_ids) == 3
    assert circuit.entry_address == circuit.path[0].address
    decoded = decode_layer(onion, keys[circuit.node_ids[0]])
    assert decoded.next_address == circuit.path[1].address


def _short_rsa_key():
    return export_public_key(rsa.generate_private_key(public_exponent=65537, key_size=1024).public_key())


@pytest.mark.parametrize("bad_key", ["not-a-key", "bm90IGRlcg==", _short_rsa_key()])
def test_build_onion_rejects_unusable_relay_key(participants, bad_key):
    bad = Participant(node_id=99, pub_key=bad_key, address=4099)
    with pytest.raises(OnionError) as exc_info:
        build_onion("hello", [participants[0], participants[1], bad], 9001)
    assert exc_info.value.error_type == ErrorType.CRYPTO
    assert exc_info.value.context == {"node_id": 99}
