"""
Key Providers
=============

Sources of key material injected into the KeyManager.

Providers:
    - StoreBackedKeyProvider: production. The RSA export identity and the
      per-note content keys live in a KeyStore and survive restarts.
    - DeterministicKeyProvider: tests. Content keys are derived from a
      fixed seed with HKDF, and the identity is supplied by the caller,
      so runs are reproducible without touching any persistent store.

Key Ids:
    export-identity           PKCS#8 DER of the RSA private key
    content-key:<note_id>     32-byte AES-256 key
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Final, Optional

from cryptography.hazmat.primitives.asymmetric import rsa

from notevault.core.crypto.aes_gcm import AES_KEY_SIZE, AesGcmCipher
from notevault.core.crypto.kdf import expand_key_hkdf
from notevault.core.crypto.key_wrap import (
    generate_rsa_private_key,
    private_key_from_der,
    private_key_to_der,
)
from notevault.core.errors import KeyManagementError, KeyNotFoundError
from notevault.core.keys.key_store import KeyStore

IDENTITY_KEY_ID: Final[str] = "export-identity"
CONTENT_KEY_PREFIX: Final[str] = "content-key:"
DEFAULT_TEST_SEED: Final[bytes] = b"notevault-deterministic-test-seed"


def content_key_id(note_id: str) -> str:
    return f"{CONTENT_KEY_PREFIX}{note_id}"


class KeyProvider(ABC):
    """Where the KeyManager gets its key material from."""

    @abstractmethod
    def load_identity(self) -> rsa.RSAPrivateKey:
        """Return the export identity, creating it if none exists yet."""

    @abstractmethod
    def content_key(self, note_id: str) -> bytes:
        """Return the note's content key, creating and persisting it if needed."""


class StoreBackedKeyProvider(KeyProvider):
    """
    Key material persisted in a KeyStore.

    The identity is generated on first use and stored as PKCS#8 DER;
    content keys are 32 random bytes stored per note.
    """

    __slots__ = ("_store", "_rsa_key_size")

    def __init__(self, key_store: KeyStore, rsa_key_size: int = 2048) -> None:
        self._store = key_store
        self._rsa_key_size = rsa_key_size

    def load_identity(self) -> rsa.RSAPrivateKey:
        try:
            return private_key_from_der(self._store.get(IDENTITY_KEY_ID))
        except KeyNotFoundError:
            pass

        private_key = generate_rsa_private_key(self._rsa_key_size)
        self._store.put(IDENTITY_KEY_ID, private_key_to_der(private_key))
        return private_key

    def content_key(self, note_id: str) -> bytes:
        key_id = content_key_id(note_id)
        try:
            key = self._store.get(key_id)
        except KeyNotFoundError:
            key = AesGcmCipher.generate_key()
            self._store.put(key_id, key)
            return key

        if len(key) != AES_KEY_SIZE:
            raise KeyManagementError(f"Stored content key for {note_id!r} has the wrong size")
        return key


class DeterministicKeyProvider(KeyProvider):
    """
    Fixed, reproducible key material for tests.

    Args:
        seed: Input key material for HKDF content-key derivation
        identity: RSA private key to hand out; generated once per
            provider when omitted
        rsa_key_size: Size used when the identity must be generated
    """

    __slots__ = ("_seed", "_identity", "_rsa_key_size", "_lock")

    def __init__(
        self,
        seed: bytes = DEFAULT_TEST_SEED,
        identity: Optional[rsa.RSAPrivateKey] = None,
        rsa_key_size: int = 2048,
    ) -> None:
        if len(seed) < 16:
            raise ValueError("Seed must be at least 16 bytes")
        self._seed = seed
        self._identity = identity
        self._rsa_key_size = rsa_key_size
        self._lock = threading.Lock()

    def load_identity(self) -> rsa.RSAPrivateKey:
        with self._lock:
            if self._identity is None:
                self._identity = generate_rsa_private_key(self._rsa_key_size)
            return self._identity

    def content_key(self, note_id: str) -> bytes:
        return expand_key_hkdf(
            self._seed,
            length=AES_KEY_SIZE,
            info=content_key_id(note_id).encode("utf-8"),
        )
