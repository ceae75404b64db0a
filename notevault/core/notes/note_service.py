"""
Note Service
============

Creates, reads and updates encrypted notes.

Tag Index Rule:
    The plaintext tag index stored with a note must always equal the
    tags inside its encrypted payload. Every write goes through
    _persist(), which encrypts the payload and stores the blob together
    with the payload's tags in one database transaction.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from typing import List, Optional

from notevault.core.crypto.crypto_helper import CryptoHelper
from notevault.core.errors import ErrorReporter, NoteVaultError
from notevault.core.keys.key_manager import KeyManager
from notevault.core.notes.models import Note, NotePayload, Tag, utc_now
from notevault.db.vault_db import VaultDatabase
from notevault.utils.validators import validate_note_id, validate_tag_name


class NoteService:
    """
    Encrypted note storage.

    Usage:
        notes = NoteService(database, key_manager)
        note = notes.create_note(NotePayload(title="Groceries", tags=("home",)))
        payload = notes.load_payload(note)
        note = notes.update_payload(note, replace(payload, pinned=True))
    """

    __slots__ = ("_db", "_keys", "_reporter", "_log")

    def __init__(
        self,
        database: VaultDatabase,
        key_manager: KeyManager,
        error_reporter: Optional[ErrorReporter] = None,
    ) -> None:
        self._db = database
        self._keys = key_manager
        self._reporter = error_reporter or ErrorReporter()
        self._log = logging.getLogger("notevault.notes")

    def create_note(self, payload: NotePayload, note_id: Optional[str] = None) -> Note:
        """
        Encrypt and store a new note.

        Args:
            payload: Note content
            note_id: Optional identifier; a fresh UUID when omitted

        Returns:
            The stored Note
        """
        note_id = validate_note_id(note_id) if note_id else str(uuid.uuid4())
        note = self._persist(note_id, payload, context="Creating note")
        self._log.info("Created note %s", note_id)
        return note

    def get_note(self, note_id: str) -> Note:
        """
        Raises:
            NoteNotFoundError: If no note has this id
        """
        return self._db.require_note(validate_note_id(note_id))

    def load_payload(self, note: Note, report: bool = True) -> NotePayload:
        """
        Decrypt a note's payload.

        Args:
            note: The note to open
            report: Send failures to the ErrorReporter; callers that report
                at their own boundary pass False

        Raises:
            AuthenticationFailure: Tampered blob or wrong key
            DeserializationError: Blob opens but is not a NotePayload
        """
        key = self._keys.get_content_key(note.id)
        try:
            return CryptoHelper.decrypt(note.encrypted_data, key, NotePayload)
        except NoteVaultError as e:
            if report:
                self._reporter.report(e, context=f"Decrypting note {note.id}")
            raise

    def update_payload(self, note: Note, payload: NotePayload, touch: bool = True) -> Note:
        """
        Replace a note's content.

        Args:
            note: The note being edited
            payload: New content
            touch: Set updated_at to now

        Returns:
            The stored Note with its refreshed tag index
        """
        if touch:
            payload = replace(payload, updated_at=utc_now())
        return self._persist(note.id, payload, context=f"Updating note {note.id}")

    def set_tags(self, note: Note, tags: List[str]) -> Note:
        """Replace the tag set of a note (payload and index together)."""
        names = [validate_tag_name(tag) for tag in tags]
        payload = self.load_payload(note)
        return self.update_payload(note, replace(payload, tags=tuple(names)))

    def delete_note(self, note: Note) -> None:
        """
        Remove a note with its tag links and attachments.

        Tags left without notes are dropped in the same transaction.
        """
        self._db.delete_note(note.id)
        self._log.info("Deleted note %s", note.id)

    def verify_tag_index(self, note: Note) -> bool:
        """True when the stored tag index matches the encrypted payload's tags."""
        stored = self._db.require_note(note.id)
        return stored.tags == self.load_payload(stored).tags

    def get_or_create_tag(self, name: str) -> Tag:
        return self._db.get_or_create_tag(validate_tag_name(name))

    def list_tags(self) -> List[Tag]:
        return self._db.list_tags()

    def _persist(self, note_id: str, payload: NotePayload, context: str) -> Note:
        for tag in payload.tags:
            validate_tag_name(tag)

        key = self._keys.get_content_key(note_id)
        try:
            blob = CryptoHelper.encrypt(payload, key)
        except NoteVaultError as e:
            self._reporter.report(e, context=context)
            raise

        return self._db.put_note(note_id, blob, payload.tags)
