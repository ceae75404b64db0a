"""
Vault Assembly
==============

Builds the default service graph from a VaultConfig. There are no
process-wide singletons: every service receives its collaborators in
its constructor, so tests can build as many independent vaults as
they like.

Graph:
    ErrorReporter
    KeyManager        <- KeyProvider (SealedKeyStore by default)
    VaultDatabase
    NoteService       <- VaultDatabase, KeyManager
    AttachmentManager <- VaultDatabase, KeyManager
    ExportManager     <- NoteService, AttachmentManager
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from notevault.core.config import VaultConfig
from notevault.core.errors import ErrorReporter, KeyManagementError
from notevault.core.file_ops.attachments import AttachmentManager
from notevault.core.file_ops.export import ExportManager
from notevault.core.keys.key_manager import KeyManager
from notevault.core.keys.key_store import SealedKeyStore
from notevault.core.keys.providers import KeyProvider, StoreBackedKeyProvider
from notevault.core.logging import get_vault_logger
from notevault.core.notes.note_service import NoteService
from notevault.db.vault_db import VaultDatabase


@dataclass(frozen=True, slots=True)
class Vault:
    config: VaultConfig
    reporter: ErrorReporter
    keys: KeyManager
    database: VaultDatabase
    notes: NoteService
    attachments: AttachmentManager
    exports: ExportManager

    def close(self) -> None:
        """Stop export workers and forget cached keys."""
        self.exports.shutdown()
        self.keys.clear_cache()

    def __enter__(self) -> Vault:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def build_vault(
    config: Optional[VaultConfig] = None,
    passphrase: Optional[str] = None,
    key_provider: Optional[KeyProvider] = None,
    configure_logging: bool = True,
) -> Vault:
    """
    Assemble a vault.

    Args:
        config: Configuration; VaultConfig.load() when omitted
        passphrase: Unlocks the sealed key store (ignored with key_provider)
        key_provider: Replaces the sealed key store, e.g. a
            DeterministicKeyProvider in tests
        configure_logging: Attach the redacting handlers to the
            "notevault" logger

    Returns:
        A ready Vault

    Raises:
        KeyManagementError: No key provider and no passphrase, or a wrong passphrase
    """
    config = config or VaultConfig.load()
    config.ensure_directories()

    if configure_logging:
        get_vault_logger(
            "notevault",
            log_dir=config.paths.log_dir,
            level=config.logging.level,
            enable_console=config.logging.enable_console,
            enable_file=config.logging.enable_file,
            enable_json=config.logging.enable_json,
        )
    log = logging.getLogger("notevault.vault")

    if key_provider is None:
        if not passphrase:
            raise KeyManagementError("A passphrase is required to open the key store")
        key_store = SealedKeyStore(
            config.paths.key_store_path,
            passphrase,
            time_cost=config.crypto.argon2_time_cost,
            memory_cost=config.crypto.argon2_memory_cost,
            parallelism=config.crypto.argon2_parallelism,
        )
        key_provider = StoreBackedKeyProvider(key_store, rsa_key_size=config.crypto.rsa_key_size)

    reporter = ErrorReporter()
    keys = KeyManager(key_provider, error_reporter=reporter)
    database = VaultDatabase(config.paths.database_path)
    notes = NoteService(database, keys, error_reporter=reporter)
    attachments = AttachmentManager(database, keys, error_reporter=reporter)
    exports = ExportManager(
        notes,
        attachments,
        config.paths.exports_path,
        error_reporter=reporter,
        max_workers=config.export.max_workers,
    )

    log.info("Vault opened at %s", config.paths.data_dir)

    return Vault(
        config=config,
        reporter=reporter,
        keys=keys,
        database=database,
        notes=notes,
        attachments=attachments,
        exports=exports,
    )
