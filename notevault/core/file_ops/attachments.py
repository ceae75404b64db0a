"""
Encrypted Attachments
=====================

Binary attachments stored encrypted under the owning note's content key.

Security Properties:
- No per-attachment key: the note's content key seals its attachments
- Each attachment gets its own random nonce
- Reads verify the GCM tag before returning any bytes

Concurrency:
    Sealing runs without locks, so attachments for one note can be
    encrypted in parallel. The record insert and attachment-count update
    for a note are serialized by one of a fixed set of striped locks,
    chosen by note id.
"""

from __future__ import annotations

import logging
import mimetypes
import threading
import uuid
from pathlib import Path
from typing import Final, List, Optional, Tuple, Union

from notevault.core.crypto.crypto_helper import CryptoHelper
from notevault.core.errors import ErrorReporter, NoteVaultError, VaultIOError
from notevault.core.keys.key_manager import KeyManager
from notevault.core.notes.models import Attachment, Note
from notevault.db.vault_db import VaultDatabase

DEFAULT_CONTENT_TYPE: Final[str] = "application/octet-stream"

LOCK_STRIPES: Final[int] = 32

AttachmentSource = Union[bytes, bytearray, Path, str]


class AttachmentManager:
    """
    Creates and reads encrypted attachments.

    Usage:
        attachments = AttachmentManager(database, key_manager)

        att = attachments.create_attachment(note, Path("clip.m4a"))
        data = attachments.read_attachment(att)
    """

    __slots__ = ("_db", "_keys", "_reporter", "_note_locks", "_log")

    def __init__(
        self,
        database: VaultDatabase,
        key_manager: KeyManager,
        error_reporter: Optional[ErrorReporter] = None,
    ) -> None:
        self._db = database
        self._keys = key_manager
        self._reporter = error_reporter or ErrorReporter()
        self._note_locks: Tuple[threading.Lock, ...] = tuple(
            threading.Lock() for _ in range(LOCK_STRIPES)
        )
        self._log = logging.getLogger("notevault.attachments")

    def create_attachment(
        self,
        note: Note,
        source: AttachmentSource,
        content_type: Optional[str] = None,
    ) -> Attachment:
        """
        Encrypt source bytes and attach them to note.

        Args:
            note: Owning note
            source: Raw bytes, or a path to read
            content_type: MIME type; guessed from the path when omitted

        Returns:
            The stored Attachment

        Raises:
            VaultIOError: If the source cannot be read
            EncryptionError: If sealing fails
            NoteNotFoundError: If the note no longer exists
        """
        context = f"Creating attachment for note {note.id}"
        try:
            data = self._read_source(source)
            key = self._keys.get_content_key(note.id)
            sealed = CryptoHelper.seal_bytes(data, key)

            attachment = Attachment(
                id=str(uuid.uuid4()),
                note_id=note.id,
                content_type=content_type or self._guess_content_type(source),
                encrypted_data=sealed,
                size=len(data),
            )

            with self._lock_for(note.id):
                count = self._db.add_attachment(attachment)

        except NoteVaultError as e:
            self._reporter.report(e, context=context)
            raise

        self._log.info(
            "Created attachment %s for note %s (%d attachments)",
            attachment.id, note.id, count,
        )
        return attachment

    def read_attachment(self, attachment: Attachment, report: bool = True) -> bytes:
        """
        Decrypt an attachment with its owning note's content key.

        Args:
            attachment: The attachment to open
            report: Send failures to the ErrorReporter

        Raises:
            AuthenticationFailure: Tampered ciphertext or key mismatch
        """
        try:
            key = self._keys.get_content_key(attachment.note_id)
            return CryptoHelper.open_bytes(attachment.encrypted_data, key)
        except NoteVaultError as e:
            if report:
                self._reporter.report(e, context=f"Reading attachment {attachment.id}")
            raise

    def list_attachments(self, note: Note) -> List[Attachment]:
        return self._db.list_attachments(note.id)

    def _lock_for(self, note_id: str) -> threading.Lock:
        return self._note_locks[hash(note_id) % LOCK_STRIPES]

    @staticmethod
    def _read_source(source: AttachmentSource) -> bytes:
        if isinstance(source, (bytes, bytearray)):
            return bytes(source)

        path = Path(source)
        try:
            return path.read_bytes()
        except OSError as e:
            raise VaultIOError(f"Cannot read attachment source {path.name!r}: {e.strerror}") from e

    @staticmethod
    def _guess_content_type(source: AttachmentSource) -> str:
        if isinstance(source, (bytes, bytearray)):
            return DEFAULT_CONTENT_TYPE
        mime_type, _ = mimetypes.guess_type(str(source))
        return mime_type or DEFAULT_CONTENT_TYPE
