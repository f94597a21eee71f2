"""
onionrelay.crypto - key management and the primitives the layer codec uses.

Asymmetric side: RSA-2048 with OAEP(SHA-256). A relay's key pair is generated
once and lives for the lifetime of the process that owns the relay.

Symmetric side: AES-256-CBC with a random IV and PKCS7 padding. A fresh key
is generated per circuit per hop and never reused.

Every key has an exported string form (base64) so it can travel inside a
layer or through the registry:

- public key:  base64(DER SubjectPublicKeyInfo)
- private key: base64(DER PKCS#8, unencrypted)
- symmetric:   base64(raw 32 key bytes)
"""

from __future__ import annotations

import base64
import logging
import math
import os
from dataclasses import dataclass

from cryptography.hazmat.primitives import hashes, padding, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric import padding as asym_padding
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .robustness import ErrorType, handle_exception

logger = logging.getLogger(__name__)

RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537
SYMMETRIC_KEY_LENGTH = 32  # AES-256
IV_LENGTH = 16

# base64 length of one RSA ciphertext block: 344 chars for RSA-2048
WRAPPED_KEY_LENGTH = 4 * math.ceil((RSA_KEY_SIZE // 8) / 3)


def _oaep() -> asym_padding.OAEP:
    return asym_padding.OAEP(
        mgf=asym_padding.MGF1(algorithm=hashes.SHA256()),
        algorithm=hashes.SHA256(),
        label=None,
    )


@dataclass(frozen=True)
class KeyPair:
    public_key: RSAPublicKey
    private_key: RSAPrivateKey


# ----- key generation -----


@handle_exception(error_type=ErrorType.CRYPTO)
def generate_key_pair() -> KeyPair:
    """Generate an RSA key pair for a relay identity."""
    private_key = rsa.generate_private_key(public_exponent=RSA_PUBLIC_EXPONENT, key_size=RSA_KEY_SIZE)
    logger.debug(f"Generated RSA-{RSA_KEY_SIZE} key pair")
    return KeyPair(public_key=private_key.public_key(), private_key=private_key)


@handle_exception(error_type=ErrorType.CRYPTO)
def generate_symmetric_key() -> bytes:
    return os.urandom(SYMMETRIC_KEY_LENGTH)


# ----- export / import -----


def export_public_key(public_key: RSAPublicKey) -> str:
    der = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return base64.b64encode(der).decode("ascii")


def export_private_key(private_key: RSAPrivateKey) -> str:
    der = private_key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return base64.b64encode(der).decode("ascii")


def export_symmetric_key(key: bytes) -> str:
    return base64.b64encode(key).decode("ascii")


def import_public_key(data: str | RSAPublicKey) -> RSAPublicKey:
    if isinstance(data, RSAPublicKey):
        return data
    key = serialization.load_der_public_key(base64.b64decode(data, validate=True))
    if not isinstance(key, RSAPublicKey):
        raise ValueError("Public key is not an RSA key")
    return key


def import_private_key(data: str | RSAPrivateKey) -> RSAPrivateKey:
    if isinstance(data, RSAPrivateKey):
        return data
    key = serialization.load_der_private_key(base64.b64decode(data, validate=True), password=None)
    if not isinstance(key, RSAPrivateKey):
        raise ValueError("Private key is not an RSA key")
    return key


def import_symmetric_key(data: str) -> bytes:
    key = base64.b64decode(data, validate=True)
    if len(key) != SYMMETRIC_KEY_LENGTH:
        raise ValueError(f"Symmetric key must be {SYMMETRIC_KEY_LENGTH} bytes, got {len(key)}")
    return key


# ----- asymmetric encryption -----


def rsa_encrypt(data: str, public_key: str | RSAPublicKey) -> str:
    """Encrypt a short string under an RSA public key; returns base64."""
    ciphertext = import_public_key(public_key).encrypt(data.encode("utf-8"), _oaep())
    return base64.b64encode(ciphertext).decode("ascii")


def rsa_decrypt(data: str, private_key: str | RSAPrivateKey) -> str:
    ciphertext = base64.b64decode(data, validate=True)
    return import_private_key(private_key).decrypt(ciphertext, _oaep()).decode("utf-8")


# ----- symmetric encryption -----


def sym_encrypt(key: bytes | str, plaintext: str) -> str:
    """
    Encrypt ``plaintext`` with AES-256-CBC.

    Returns base64(iv ++ ciphertext). The IV is random per call so two
    encryptions of the same plaintext never match.
    """
    if isinstance(key, str):
        key = import_symmetric_key(key)
    iv = os.urandom(IV_LENGTH)
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()
    return base64.b64encode(iv + ciphertext).decode("ascii")


def sym_decrypt(key: bytes | str, ciphertext: str) -> str:
    if isinstance(key, str):
        key = import_symmetric_key(key)
    raw = base64.b64decode(ciphertext, validate=True)
    if len(raw) < IV_LENGTH + algorithms.AES.block_size // 8:
        raise ValueError("Symmetric ciphertext too short")
    iv, body = raw[:IV_LENGTH], raw[IV_LENGTH:]
    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(body) + decryptor.finalize()
    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    plaintext = unpadder.update(padded) + unpadder.finalize()
    return plaintext.decode("utf-8")
