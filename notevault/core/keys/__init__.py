"""
Key management: the export identity, per-note content keys and the
stores they persist in.
"""

from notevault.core.keys.key_manager import KeyManager
from notevault.core.keys.key_store import KeyStore, MemoryKeyStore, SealedKeyStore
from notevault.core.keys.providers import (
    DeterministicKeyProvider,
    KeyProvider,
    StoreBackedKeyProvider,
)

__all__ = [
    "KeyManager",
    "KeyStore",
    "MemoryKeyStore",
    "SealedKeyStore",
    "KeyProvider",
    "StoreBackedKeyProvider",
    "DeterministicKeyProvider",
]
