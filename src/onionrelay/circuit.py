"""
onionrelay.circuit - path selection and onion construction on the origin side.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey

from .crypto import generate_symmetric_key
from .layered_crypto import encode_layer
from .robustness import ErrorType, InsufficientParticipants, OnionError, log_with_context

logger = logging.getLogger(__name__)

CIRCUIT_LENGTH = 3


@dataclass(frozen=True)
class Participant:
    """A registered relay resolved to the address it listens on."""

    node_id: int
    pub_key: str | RSAPublicKey
    address: int


@dataclass(frozen=True)
class Circuit:
    path: tuple[Participant, ...]
    final_address: int

    @property
    def node_ids(self) -> list[int]:
        return [p.node_id for p in self.path]

    @property
    def entry_address(self) -> int:
        return self.path[0].address


def select_path(
    participants: Iterable[Participant],
    rng: random.Random | None = None,
    length: int = CIRCUIT_LENGTH,
) -> list[Participant]:
    """
    Pick ``length`` distinct relays uniformly at random, without replacement.

    Pass a seeded ``random.Random`` for a reproducible path.

    Raises:
        InsufficientParticipants: fewer than ``length`` distinct relays.
    """
    unique: dict[int, Participant] = {}
    for participant in participants:
        unique.setdefault(participant.node_id, participant)
    candidates = list(unique.values())

    if len(candidates) < length:
        raise InsufficientParticipants(len(candidates), length)

    rng = rng or random.Random()
    return rng.sample(candidates, length)


def build_onion(
    plaintext: str,
    path: list[Participant],
    final_address: int,
    key_factory: Callable[[], bytes] = generate_symmetric_key,
) -> str:
    """
    Fold ``plaintext`` into one layer per relay, innermost (exit) first.

    The layer for ``path[i]`` names the address that relay must forward to:
    ``final_address`` for the last relay, ``path[i + 1].address`` otherwise.
    The returned wire string is what gets sent to ``path[0]``.

    Raises:
        OnionError: a relay's public key is unusable (not base64 DER, not
            RSA, or not the expected size).
    """
    if len(path) != CIRCUIT_LENGTH:
        raise ValueError(f"Circuit needs exactly {CIRCUIT_LENGTH} relays, got {len(path)}")
    if len({p.node_id for p in path}) != len(path):
        raise ValueError("Circuit relays must be distinct")

    current = plaintext
    current_target = final_address
    for hop in reversed(path):
        hop_key = key_factory()
        try:
            current = encode_layer(current_target, current, hop_key, hop.pub_key)
        except (ValueError, UnsupportedAlgorithm) as e:
            # the directory stores keys unchecked; a bad one surfaces here
            raise OnionError(
                f"Cannot encrypt layer for node {hop.node_id}: {e}",
                ErrorType.CRYPTO,
                {"node_id": hop.node_id},
            ) from e
        current_target = hop.address

    log_with_context(
        "Built onion",
        "debug",
        {"path": [p.node_id for p in path], "final_address": final_address, "size": len(current)},
    )
    return current


def build_circuit(
    plaintext: str,
    participants: Iterable[Participant],
    final_address: int,
    rng: random.Random | None = None,
) -> tuple[Circuit, str]:
    """Select a fresh path and build the onion for it in one step."""
    path = select_path(participants, rng=rng)
    circuit = Circuit(path=tuple(path), final_address=final_address)
    logger.info(f"New circuit generated: {circuit.node_ids}")
    return circuit, build_onion(plaintext, path, final_address)
