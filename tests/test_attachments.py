from __future__ import annotations

import sqlite3
import threading
import uuid
from pathlib import Path

import pytest

from notevault.core.errors import AuthenticationFailure, ErrorReporter, NoteNotFoundError, VaultIOError
from notevault.core.file_ops.attachments import DEFAULT_CONTENT_TYPE, LOCK_STRIPES, AttachmentManager
from notevault.core.keys.key_manager import KeyManager
from notevault.core.notes.models import Note, NotePayload
from notevault.core.notes.note_service import NoteService
from notevault.db.vault_db import VaultDatabase


@pytest.fixture
def note(notes: NoteService) -> Note:
    return notes.create_note(NotePayload(title="Trip"))


def test_bytes_round_trip(attachments: AttachmentManager, note: Note) -> None:
    data = b"\x00\x01binary\xff" * 100

    attachment = attachments.create_attachment(note, data)

    assert attachment.note_id == note.id
    assert attachment.size == len(data)
    assert attachment.content_type == DEFAULT_CONTENT_TYPE
    assert data not in attachment.encrypted_data
    assert attachments.read_attachment(attachment) == data


def test_path_source_guesses_content_type(
    attachments: AttachmentManager, note: Note, tmp_path: Path
) -> None:
    source = tmp_path / "itinerary.pdf"
    source.write_bytes(b"%PDF-1.7 fake")

    attachment = attachments.create_attachment(note, source)

    assert attachment.content_type == "application/pdf"
    assert attachments.read_attachment(attachment) == b"%PDF-1.7 fake"


def test_explicit_content_type_wins(attachments: AttachmentManager, note: Note, tmp_path: Path) -> None:
    source = tmp_path / "clip.bin"
    source.write_bytes(b"audio")

    attachment = attachments.create_attachment(note, str(source), content_type="audio/mp4")

    assert attachment.content_type == "audio/mp4"


def test_unreadable_source_raises_vault_io_error(
    attachments: AttachmentManager, note: Note, tmp_path: Path, reporter: ErrorReporter
) -> None:
    with pytest.raises(VaultIOError):
        attachments.create_attachment(note, tmp_path / "missing.png")

    assert reporter.last_report is not None
    assert reporter.last_report.error_type == "VaultIOError"


def test_attachment_count_is_tracked(
    attachments: AttachmentManager, notes: NoteService, note: Note
) -> None:
    attachments.create_attachment(note, b"one")
    attachments.create_attachment(note, b"two")

    assert notes.get_note(note.id).attachment_count == 2
    assert [attachments.read_attachment(a) for a in attachments.list_attachments(note)] in (
        [b"one", b"two"],
        [b"two", b"one"],
    )


def test_concurrent_creation_counts_every_attachment(
    attachments: AttachmentManager, notes: NoteService, note: Note
) -> None:
    errors: list[BaseException] = []
    barrier = threading.Barrier(10)

    def worker(index: int) -> None:
        barrier.wait()
        try:
            attachments.create_attachment(note, f"attachment {index}".encode())
        except BaseException as e:  # surfaced by the assertion below
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(10)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert notes.get_note(note.id).attachment_count == 10
    assert len(attachments.list_attachments(note)) == 10


def test_note_locks_are_bounded_and_stable(attachments: AttachmentManager) -> None:
    note_ids = [str(uuid.uuid4()) for _ in range(500)]

    locks = {id(attachments._lock_for(note_id)) for note_id in note_ids}

    assert len(locks) <= LOCK_STRIPES
    assert attachments._lock_for(note_ids[0]) is attachments._lock_for(note_ids[0])


def test_attachment_for_missing_note_fails(attachments: AttachmentManager) -> None:
    ghost = Note(id=str(uuid.uuid4()), encrypted_data=b"")

    with pytest.raises(NoteNotFoundError):
        attachments.create_attachment(ghost, b"orphan")


def test_tampered_attachment_fails_authentication(
    attachments: AttachmentManager, database: VaultDatabase, note: Note, tmp_path: Path
) -> None:
    attachment = attachments.create_attachment(note, b"original bytes")
    tampered = bytearray(attachment.encrypted_data)
    tampered[-1] ^= 0x01

    with sqlite3.connect(tmp_path / "vault.db") as conn:
        conn.execute(
            "UPDATE attachments SET encrypted_data = ? WHERE id = ?",
            (bytes(tampered), attachment.id),
        )

    stored = database.get_attachment(attachment.id)
    assert stored is not None
    with pytest.raises(AuthenticationFailure):
        attachments.read_attachment(stored)


def test_attachment_sealed_under_note_key(
    attachments: AttachmentManager, key_manager: KeyManager, notes: NoteService, note: Note
) -> None:
    other = notes.create_note(NotePayload(title="Other"))
    attachment = attachments.create_attachment(note, b"payload")

    moved = type(attachment)(
        id=attachment.id,
        note_id=other.id,
        content_type=attachment.content_type,
        encrypted_data=attachment.encrypted_data,
        size=attachment.size,
    )

    assert key_manager.get_content_key(note.id) != key_manager.get_content_key(other.id)
    with pytest.raises(AuthenticationFailure):
        attachments.read_attachment(moved)
