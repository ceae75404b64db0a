"""
Key Manager
===========

Sole authority for key material in the vault.

Responsibilities:
    - RSA export identity: generated (or loaded) exactly once per
      process on first access, then cached
    - Per-note AES-256 content keys: created on first access, persisted
      by the provider, stable for the note's lifetime
    - Test mode: swap this instance's provider for a deterministic one

Thread Safety:
    Identity creation and content-key creation each run inside a
    critical section, so concurrent first callers always observe the
    same key.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, Optional

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric import rsa

from notevault.core.crypto.key_wrap import public_key_to_der, public_key_to_pem
from notevault.core.errors import (
    ErrorReporter,
    KeyGenerationError,
    KeyManagementError,
)
from notevault.core.keys.providers import DeterministicKeyProvider, KeyProvider
from notevault.utils.validators import validate_note_id


class KeyManager:
    """
    Owns the export identity and the per-note content keys.

    Usage:
        manager = KeyManager(StoreBackedKeyProvider(store))

        public_der = manager.get_export_public_key_data()
        key = manager.get_content_key(note.id)

        # Tests
        manager.enable_test_mode()
        ...
        manager.disable_test_mode()
    """

    __slots__ = (
        "_provider",
        "_production_provider",
        "_reporter",
        "_identity",
        "_content_keys",
        "_identity_lock",
        "_content_lock",
        "_log",
    )

    def __init__(
        self,
        provider: KeyProvider,
        error_reporter: Optional[ErrorReporter] = None,
    ) -> None:
        self._provider = provider
        self._production_provider: Optional[KeyProvider] = None
        self._reporter = error_reporter or ErrorReporter()
        self._identity: Optional[rsa.RSAPrivateKey] = None
        self._content_keys: Dict[str, bytes] = {}
        self._identity_lock = threading.Lock()
        self._content_lock = threading.Lock()
        self._log = logging.getLogger("notevault.keys")

    # --- Export identity -------------------------------------------------

    def get_export_private_key(self) -> rsa.RSAPrivateKey:
        """
        Return the cached export identity, creating it on first call.

        Raises:
            KeyGenerationError: If the identity cannot be loaded or generated
        """
        identity = self._identity
        if identity is not None:
            return identity

        with self._identity_lock:
            if self._identity is None:
                self._identity = self._load_identity()
            return self._identity

    def get_export_public_key(self) -> rsa.RSAPublicKey:
        return self.get_export_private_key().public_key()

    def get_export_public_key_data(self) -> bytes:
        """
        DER SubjectPublicKeyInfo of the export public key, for sending
        to people who will export notes to this device.

        Raises:
            KeyGenerationError: If no identity is available
        """
        return public_key_to_der(self.get_export_public_key())

    def get_export_public_key_pem(self) -> str:
        return public_key_to_pem(self.get_export_public_key())

    def _load_identity(self) -> rsa.RSAPrivateKey:
        try:
            identity = self._provider.load_identity()
        except KeyGenerationError as e:
            self._reporter.report(e, context="Loading export identity")
            raise
        except (KeyManagementError, UnsupportedAlgorithm, ValueError, TypeError) as e:
            error = KeyGenerationError("Export identity could not be created")
            self._reporter.report(error, context="Loading export identity")
            raise error from e

        if not isinstance(identity, rsa.RSAPrivateKey):
            error = KeyGenerationError("Key provider returned a non-RSA identity")
            self._reporter.report(error, context="Loading export identity")
            raise error

        self._log.info("Export identity ready (%d-bit RSA)", identity.key_size)
        return identity

    # --- Content keys ----------------------------------------------------

    def get_content_key(self, note_id: str) -> bytes:
        """
        Return the note's 32-byte content key, creating it on first access.

        Raises:
            ValueError: If note_id is not a valid note identifier
            KeyManagementError: If the key cannot be loaded or persisted
        """
        note_id = validate_note_id(note_id)

        key = self._content_keys.get(note_id)
        if key is not None:
            return key

        with self._content_lock:
            key = self._content_keys.get(note_id)
            if key is None:
                try:
                    key = self._provider.content_key(note_id)
                except KeyManagementError as e:
                    self._reporter.report(e, context=f"Content key for note {note_id}")
                    raise
                self._content_keys[note_id] = key
            return key

    # --- Cache and test mode --------------------------------------------

    def clear_cache(self) -> None:
        """Forget cached key material; it is reloaded from the provider."""
        with self._identity_lock:
            self._identity = None
        with self._content_lock:
            self._content_keys.clear()

    def enable_test_mode(self, provider: Optional[KeyProvider] = None) -> None:
        """
        Route this manager to deterministic key material.

        Args:
            provider: Test provider; defaults to a DeterministicKeyProvider
                with the built-in seed
        """
        if self._production_provider is None:
            self._production_provider = self._provider
        self._provider = provider or DeterministicKeyProvider()
        self.clear_cache()
        self._log.warning("Key manager switched to test key material")

    def disable_test_mode(self) -> None:
        """Restore the provider that was active before enable_test_mode()."""
        if self._production_provider is None:
            return
        self._provider = self._production_provider
        self._production_provider = None
        self.clear_cache()

    @property
    def is_test_mode(self) -> bool:
        return self._production_provider is not None

    def __repr__(self) -> str:
        return f"KeyManager(provider={type(self._provider).__name__}, test_mode={self.is_test_mode})"
