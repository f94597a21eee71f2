"""onionrelay package namespace.

Onion routing overlay: an origin wraps a payload in one hybrid-encrypted
layer per relay of a random 3-relay circuit, and each relay peels exactly
one layer before forwarding the rest.
"""

from .__about__ import __version__
from . import config
from . import crypto
from . import layered_crypto
from . import circuit
from . import network
from . import registry
from . import relay
from . import user

__all__ = [
    "__version__",
    "config",
    "crypto",
    "layered_crypto",
    "circuit",
    "network",
    "registry",
    "relay",
    "user",
]
