"""
Key Stores
==========

The secure key store capability consumed by the key providers:

    put(key_id, bytes)
    get(key_id) -> bytes      (KeyNotFoundError when absent)

Implementations:
    - MemoryKeyStore: process-local dictionary, for tests and tooling
    - SealedKeyStore: SQLite file whose entries are AES-256-GCM sealed
      under a master key derived from a passphrase with Argon2id

SealedKeyStore Format:
    meta(name, value)            salt, passphrase check blob
    key_material(key_id, sealed, created_at)
    Each entry is sealed with its key_id as AAD, so rows cannot be
    swapped between ids without failing authentication.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Final, Protocol, runtime_checkable

from cryptography.exceptions import InvalidTag

from notevault.core.crypto.aes_gcm import AesGcmCipher, FramedCiphertext
from notevault.core.crypto.kdf import (
    ARGON2_MEMORY_COST,
    ARGON2_PARALLELISM,
    ARGON2_TIME_COST,
    derive_key_argon2,
    generate_salt,
)
from notevault.core.errors import KeyManagementError, KeyNotFoundError

logger = logging.getLogger("notevault.keystore")

_CHECK_AAD: Final[bytes] = b"notevault-keystore-check-v1"
_CHECK_PLAINTEXT: Final[bytes] = b"notevault"


@runtime_checkable
class KeyStore(Protocol):
    def put(self, key_id: str, key_bytes: bytes) -> None: ...

    def get(self, key_id: str) -> bytes: ...


class MemoryKeyStore:
    """Thread-safe in-memory key store. Contents vanish with the process."""

    __slots__ = ("_entries", "_lock")

    def __init__(self) -> None:
        self._entries: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def put(self, key_id: str, key_bytes: bytes) -> None:
        with self._lock:
            self._entries[key_id] = bytes(key_bytes)

    def get(self, key_id: str) -> bytes:
        with self._lock:
            try:
                return self._entries[key_id]
            except KeyError:
                raise KeyNotFoundError(f"No key stored for {key_id!r}") from None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class SealedKeyStore:
    """
    Passphrase-protected persistent key store.

    Usage:
        store = SealedKeyStore(config.paths.key_store_path, passphrase)
        store.put("content-key:1234", key)
        key = store.get("content-key:1234")

    Security Notes:
        - Key material is only ever written sealed
        - A wrong passphrase is detected on open, before any get/put
        - The master key lives only in this object
    """

    _SCHEMA: Final[str] = """
    CREATE TABLE IF NOT EXISTS meta (
        name TEXT PRIMARY KEY,
        value BLOB NOT NULL
    );
    CREATE TABLE IF NOT EXISTS key_material (
        key_id TEXT PRIMARY KEY,
        sealed BLOB NOT NULL,
        created_at TEXT NOT NULL
    );
    """

    __slots__ = ("_db_path", "_master_key", "_cipher", "_lock")

    def __init__(
        self,
        db_path: Path | str,
        passphrase: str,
        time_cost: int = ARGON2_TIME_COST,
        memory_cost: int = ARGON2_MEMORY_COST,
        parallelism: int = ARGON2_PARALLELISM,
    ) -> None:
        if not passphrase:
            raise KeyManagementError("Key store passphrase cannot be empty")

        self._db_path = Path(db_path)
        self._cipher = AesGcmCipher()
        self._lock = threading.Lock()

        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._get_connection() as conn:
            conn.executescript(self._SCHEMA)

        salt = self._load_meta("salt")
        if salt is None:
            salt = generate_salt()
            self._store_meta("salt", salt)

        self._master_key = derive_key_argon2(
            passphrase,
            salt,
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
        )
        self._verify_or_init_check()

    def _get_connection(self) -> sqlite3.Connection:
        return sqlite3.connect(self._db_path)

    def _load_meta(self, name: str) -> bytes | None:
        with self._get_connection() as conn:
            row = conn.execute("SELECT value FROM meta WHERE name = ?", (name,)).fetchone()
        return bytes(row[0]) if row else None

    def _store_meta(self, name: str, value: bytes) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO meta (name, value) VALUES (?, ?)",
                (name, value),
            )

    def _verify_or_init_check(self) -> None:
        check = self._load_meta("check")
        if check is None:
            frame = self._cipher.seal(_CHECK_PLAINTEXT, self._master_key, aad=_CHECK_AAD)
            self._store_meta("check", frame.to_bytes())
            return

        try:
            self._cipher.open(FramedCiphertext.from_bytes(check), self._master_key, aad=_CHECK_AAD)
        except (InvalidTag, ValueError) as e:
            raise KeyManagementError("Key store passphrase is incorrect") from e

    def put(self, key_id: str, key_bytes: bytes) -> None:
        frame = self._cipher.seal(key_bytes, self._master_key, aad=key_id.encode("utf-8"))
        with self._lock, self._get_connection() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO key_material (key_id, sealed, created_at)
                VALUES (?, ?, ?)
                """,
                (key_id, frame.to_bytes(), datetime.now(timezone.utc).isoformat()),
            )
        logger.debug("Stored key entry %s", key_id)

    def get(self, key_id: str) -> bytes:
        with self._lock, self._get_connection() as conn:
            row = conn.execute(
                "SELECT sealed FROM key_material WHERE key_id = ?", (key_id,)
            ).fetchone()

        if row is None:
            raise KeyNotFoundError(f"No key stored for {key_id!r}")

        try:
            return self._cipher.open(
                FramedCiphertext.from_bytes(bytes(row[0])),
                self._master_key,
                aad=key_id.encode("utf-8"),
            )
        except (InvalidTag, ValueError) as e:
            raise KeyManagementError(f"Key entry {key_id!r} failed authentication") from e

    def __repr__(self) -> str:
        return f"SealedKeyStore(path={self._db_path})"
