"""
onionrelay.layered_crypto - hybrid encoding of a single onion layer.

Wire form of one layer::

    wrapped_key (WRAPPED_KEY_LENGTH chars) ++ body

``wrapped_key`` is the RSA-OAEP encryption of the exported per-hop AES key,
base64 encoded. Its length is fixed by the RSA key size, which is what lets a
relay split the layer without a delimiter or length prefix.

``body`` is the AES encryption of ``address_field ++ inner_payload`` where the
address field is exactly ADDRESS_FIELD_LENGTH zero-padded decimal digits
naming who receives the inner payload next. An empty body is the terminal
case: nothing further to decrypt or forward.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey

from .crypto import (
    WRAPPED_KEY_LENGTH,
    export_symmetric_key,
    import_symmetric_key,
    rsa_decrypt,
    rsa_encrypt,
    sym_decrypt,
    sym_encrypt,
)
from .robustness import MalformedLayer

logger = logging.getLogger(__name__)

ADDRESS_FIELD_LENGTH = 10

# Errors the cryptography primitives and base64/utf-8 decoding raise on a
# corrupt or foreign layer.
_DECODE_ERRORS = (ValueError, InvalidKey)


def format_address(address: int) -> str:
    """Format an address as a 10-digit zero-padded decimal string."""
    if address < 0:
        raise ValueError(f"Address must be non-negative, got {address}")
    field = str(address).zfill(ADDRESS_FIELD_LENGTH)
    if len(field) != ADDRESS_FIELD_LENGTH:
        raise ValueError(f"Address {address} does not fit in {ADDRESS_FIELD_LENGTH} digits")
    return field


@dataclass(frozen=True)
class Layer:
    wrapped_key: str
    body: str

    def to_wire(self) -> str:
        return self.wrapped_key + self.body

    @classmethod
    def from_wire(cls, wire: str) -> Layer:
        if len(wire) < WRAPPED_KEY_LENGTH:
            raise MalformedLayer(
                f"Layer shorter than wrapped key length ({len(wire)} < {WRAPPED_KEY_LENGTH})",
                {"length": len(wire)},
            )
        return cls(wrapped_key=wire[:WRAPPED_KEY_LENGTH], body=wire[WRAPPED_KEY_LENGTH:])

    @property
    def is_terminal(self) -> bool:
        return not self.body


@dataclass(frozen=True)
class DecodedLayer:
    """Result of peeling one layer: where to send ``remainder`` next, if anywhere."""

    next_address: int | None
    remainder: str


def encode_layer(
    destination_address: int,
    inner_payload: str,
    hop_sym_key: bytes,
    hop_public_key: str | RSAPublicKey,
) -> str:
    """
    Wrap ``inner_payload`` in one layer addressed to the holder of ``hop_public_key``.

    Args:
        destination_address: Address the hop must forward ``inner_payload`` to.
        inner_payload: Next layer's wire form, or the final plaintext.
        hop_sym_key: Fresh AES key for this hop.
        hop_public_key: The hop's RSA public key (object or exported string).

    Returns:
        The layer's wire form, ``wrapped_key ++ body``.
    """
    body = sym_encrypt(hop_sym_key, format_address(destination_address) + inner_payload)
    wrapped_key = rsa_encrypt(export_symmetric_key(hop_sym_key), hop_public_key)
    if len(wrapped_key) != WRAPPED_KEY_LENGTH:
        raise ValueError(
            f"Wrapped key length {len(wrapped_key)} != {WRAPPED_KEY_LENGTH}; "
            "hop public key has an unexpected size"
        )
    return Layer(wrapped_key=wrapped_key, body=body).to_wire()


def decode_layer(wire: str, hop_private_key: str | RSAPrivateKey) -> DecodedLayer:
    """
    Peel one layer with this hop's private key.

    The parsed address is not range-checked; deciding whether it names a
    relay or a final recipient is the caller's job.

    Raises:
        MalformedLayer: input shorter than the wrapped key, or the wrapped key
            or body cannot be decrypted with ``hop_private_key``.
    """
    layer = Layer.from_wire(wire)

    try:
        sym_key = import_symmetric_key(rsa_decrypt(layer.wrapped_key, hop_private_key))
    except _DECODE_ERRORS as e:
        raise MalformedLayer(f"Could not unwrap layer key: {e}") from e

    if layer.is_terminal:
        logger.debug("Empty layer body, nothing further to decrypt")
        return DecodedLayer(next_address=None, remainder="")

    try:
        plaintext = sym_decrypt(sym_key, layer.body)
    except _DECODE_ERRORS as e:
        raise MalformedLayer(f"Could not decrypt layer body: {e}") from e

    if len(plaintext) < ADDRESS_FIELD_LENGTH:
        return DecodedLayer(next_address=None, remainder=plaintext)

    address_field = plaintext[:ADDRESS_FIELD_LENGTH]
    if not (address_field.isascii() and address_field.isdigit()):
        raise MalformedLayer("Address field is not decimal", {"address_field": address_field})
    return DecodedLayer(next_address=int(address_field), remainder=plaintext[ADDRESS_FIELD_LENGTH:])
