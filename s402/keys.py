"""
Ed25519 key helpers.

Keys are raw 32-byte values. Public keys double as Solana addresses, so the
canonical text form is base58; hex and base64 are accepted as well.
"""

from __future__ import annotations

from base64 import b64decode, b64encode

import base58
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from .models import KeyPair

KEY_LENGTH = 32


def _check_length(key: bytes, kind: str) -> bytes:
    if len(key) != KEY_LENGTH:
        raise ValueError(f"Invalid {kind} length: expected {KEY_LENGTH} bytes, got {len(key)}")
    return key


def generate_key_pair() -> KeyPair:
    """
    Generate a new Ed25519 key pair.

    Returns:
        KeyPair with raw 32-byte public and private keys.
    """
    sk = Ed25519PrivateKey.generate()
    private_key = sk.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return KeyPair(public_key=public_key_from_private(private_key), private_key=private_key)


def public_key_from_private(private_key: bytes) -> bytes:
    """Derive the raw public key from a raw 32-byte private key."""
    sk = Ed25519PrivateKey.from_private_bytes(_check_length(private_key, "private key"))
    return sk.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


def load_private_key(private_key: bytes) -> Ed25519PrivateKey:
    return Ed25519PrivateKey.from_private_bytes(_check_length(private_key, "private key"))


def load_public_key(public_key: bytes) -> Ed25519PublicKey:
    return Ed25519PublicKey.from_public_bytes(_check_length(public_key, "public key"))


# --- Export ---


def export_public_key(public_key: bytes) -> str:
    """Export a public key as base58 (Solana address format)."""
    return base58.b58encode(public_key).decode("ascii")


def export_public_key_base64(public_key: bytes) -> str:
    return b64encode(public_key).decode("ascii")


def export_public_key_hex(public_key: bytes) -> str:
    return public_key.hex()


def export_private_key(private_key: bytes) -> str:
    """Export a private key as hex."""
    return private_key.hex()


def export_private_key_base64(private_key: bytes) -> str:
    return b64encode(private_key).decode("ascii")


# --- Import ---


def import_public_key(base58_key: str) -> bytes:
    """Import a base58 public key (Solana address format)."""
    try:
        raw = base58.b58decode(base58_key)
    except ValueError as e:
        raise ValueError(f"Invalid base58 public key: {e}") from e
    return _check_length(raw, "public key")


def import_public_key_base64(base64_key: str) -> bytes:
    return _check_length(b64decode(base64_key), "public key")


def import_public_key_hex(hex_key: str) -> bytes:
    return _check_length(bytes.fromhex(hex_key), "public key")


def import_private_key(hex_key: str) -> bytes:
    """Import a hex-encoded private key."""
    return _check_length(bytes.fromhex(hex_key), "private key")


def import_private_key_base64(base64_key: str) -> bytes:
    return _check_length(b64decode(base64_key), "private key")
