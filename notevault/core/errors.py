"""
Error Taxonomy and Reporting
============================

Typed failures raised by the NoteVault services, and the single
collaborator every service funnels its failures through.

Error Handling Rules:
    - Cryptographic and structural failures always propagate to the caller
    - No silent fallback to unencrypted output
    - No silent key regeneration after a failure
    - Messages never contain key material or plaintext
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Deque, Final, List, Optional
import logging


MAX_REPORT_HISTORY: Final[int] = 100


class NoteVaultError(Exception):
    """Base class for every NoteVault failure."""
    pass


class KeyManagementError(NoteVaultError):
    """Raised when key material cannot be stored or retrieved."""
    pass


class KeyGenerationError(KeyManagementError):
    """Raised when the export identity cannot be created or loaded."""
    pass


class KeyNotFoundError(KeyManagementError):
    """Raised when the key store holds no entry for a key id."""
    pass


class CryptoError(NoteVaultError):
    """Base class for cryptographic failures."""
    pass


class EncryptionError(CryptoError):
    """Raised when sealing fails."""
    pass


class DecryptionError(CryptoError):
    """
    Raised when stored note data cannot be decrypted.

    The cause is chained but not described, to avoid leaking
    details about the stored ciphertext.
    """
    pass


class AuthenticationFailure(CryptoError):
    """
    Raised when the GCM tag does not verify.

    Indicates tampering, corruption or the wrong key. Never retried,
    and no plaintext is released.
    """
    pass


class DeserializationError(CryptoError):
    """Raised when authenticated plaintext does not have the expected shape."""
    pass


class KeyWrapError(CryptoError):
    """Raised for a malformed recipient key or a failed key wrap/unwrap."""
    pass


class ExportError(NoteVaultError):
    """Raised when an export archive cannot be produced or read."""
    pass


class ExportCancelled(ExportError):
    """Raised inside an export that was cancelled while in flight."""
    pass


class NoteNotFoundError(NoteVaultError):
    """Raised when a note identifier has no stored record."""
    pass


class VaultIOError(NoteVaultError, OSError):
    """Filesystem failure reading a source or writing an archive."""
    pass


@dataclass(frozen=True, slots=True)
class ErrorReport:
    """A single reported failure."""

    error_type: str
    message: str
    context: str
    reported_at: datetime

    def describe(self) -> str:
        prefix = f"{self.context}: " if self.context else ""
        return f"{prefix}{self.error_type}: {self.message}"


class ErrorReporter:
    """
    Centralized sink for failures raised by the vault services.

    Services report here instead of presenting errors themselves. The
    reporter logs each failure, keeps a bounded history and notifies
    listeners (for example a presentation layer showing an alert).

    Usage:
        reporter = ErrorReporter()
        reporter.add_listener(lambda report: print(report.describe()))

        try:
            export_manager.export(note, key_data)
        except NoteVaultError:
            ...  # already reported by the export manager
    """

    __slots__ = ("_logger", "_history", "_listeners", "_lock")

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        history_size: int = MAX_REPORT_HISTORY,
    ) -> None:
        self._logger = logger or logging.getLogger("notevault.errors")
        self._history: Deque[ErrorReport] = deque(maxlen=history_size)
        self._listeners: List[Callable[[ErrorReport], None]] = []
        self._lock = threading.Lock()

    def report(self, error: BaseException, context: str = "") -> ErrorReport:
        """
        Record a failure.

        Args:
            error: The exception being surfaced
            context: Short description of the operation that failed

        Returns:
            The stored ErrorReport
        """
        entry = ErrorReport(
            error_type=type(error).__name__,
            message=str(error),
            context=context,
            reported_at=datetime.now(timezone.utc),
        )

        self._logger.error(entry.describe())

        with self._lock:
            self._history.append(entry)
            listeners = list(self._listeners)

        for listener in listeners:
            listener(entry)

        return entry

    def add_listener(self, listener: Callable[[ErrorReport], None]) -> None:
        with self._lock:
            self._listeners.append(listener)

    @property
    def history(self) -> List[ErrorReport]:
        with self._lock:
            return list(self._history)

    @property
    def last_report(self) -> Optional[ErrorReport]:
        with self._lock:
            return self._history[-1] if self._history else None

    def clear(self) -> None:
        with self._lock:
            self._history.clear()
