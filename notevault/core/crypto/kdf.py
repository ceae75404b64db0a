"""
Key Derivation Functions
========================

Implements:
    - Argon2id for deriving the key-store master key from a passphrase
    - HKDF-SHA256 for deterministic per-note keys from a seed
"""

from __future__ import annotations

import secrets
from typing import Final

from argon2.low_level import Type, hash_secret_raw
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

# Argon2id parameters (OWASP recommended)
ARGON2_TIME_COST: Final[int] = 3
ARGON2_MEMORY_COST: Final[int] = 65536  # 64 MB
ARGON2_PARALLELISM: Final[int] = 4
SALT_SIZE: Final[int] = 16


def generate_salt() -> bytes:
    return secrets.token_bytes(SALT_SIZE)


def derive_key_argon2(
    passphrase: str,
    salt: bytes,
    length: int = 32,
    time_cost: int = ARGON2_TIME_COST,
    memory_cost: int = ARGON2_MEMORY_COST,
    parallelism: int = ARGON2_PARALLELISM,
) -> bytes:
    """
    Derive a key from a passphrase using Argon2id.

    Args:
        passphrase: User passphrase
        salt: Random salt (at least 16 bytes)
        length: Output key length
        time_cost: Iterations
        memory_cost: Memory in KiB
        parallelism: Lanes

    Returns:
        Derived key bytes
    """
    if len(salt) < SALT_SIZE:
        raise ValueError(f"Salt must be at least {SALT_SIZE} bytes")

    return hash_secret_raw(
        secret=passphrase.encode("utf-8"),
        salt=salt,
        time_cost=time_cost,
        memory_cost=memory_cost,
        parallelism=parallelism,
        hash_len=length,
        type=Type.ID,
    )


def expand_key_hkdf(
    key_material: bytes,
    length: int,
    info: bytes = b"",
    salt: bytes | None = None,
) -> bytes:
    """
    Expand key material using HKDF-SHA256.

    Args:
        key_material: Input key material
        length: Output length
        info: Context string binding the output to its use
        salt: Optional salt

    Returns:
        Expanded key bytes
    """
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=length,
        salt=salt,
        info=info,
    )
    return hkdf.derive(key_material)
