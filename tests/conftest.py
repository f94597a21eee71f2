import os
import sys

import pytest

# Ensure src/ is importable when the package is not installed
SRC = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src"))
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from onionrelay.circuit import Participant  # noqa: E402
from onionrelay.crypto import generate_key_pair  # noqa: E402
from onionrelay.relay import RelayContext  # noqa: E402

BASE_RELAY_PORT = 4000


@pytest.fixture(scope="session")
def key_pairs():
    # RSA generation is slow; share one set of identities across the run
    return [generate_key_pair() for _ in range(4)]


@pytest.fixture
def relay_contexts(key_pairs):
    return [
        RelayContext(node_id=i, key_pair=kp, address=BASE_RELAY_PORT + i)
        for i, kp in enumerate(key_pairs)
    ]


@pytest.fixture
def participants(relay_contexts):
    return [
        Participant(node_id=ctx.node_id, pub_key=ctx.public_key_b64, address=ctx.address)
        for ctx in relay_contexts
    ]
