from __future__ import annotations

import json
import sqlite3
import threading
import zipfile
from base64 import b64decode
from pathlib import Path

import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from notevault.core.crypto.crypto_helper import CryptoHelper
from notevault.core.crypto.key_wrap import (
    generate_rsa_private_key,
    public_key_to_der,
    public_key_to_pem,
    unwrap_key,
)
from notevault.core.errors import (
    AuthenticationFailure,
    DecryptionError,
    ErrorReporter,
    ExportCancelled,
    KeyWrapError,
    NoteNotFoundError,
    VaultIOError,
)
from notevault.core.file_ops.attachments import AttachmentManager
from notevault.core.file_ops.bundle import ExportBundle
from notevault.core.file_ops.export import (
    KEY_MEMBER,
    MANIFEST_MEMBER,
    PAYLOAD_MEMBER,
    ExportManager,
    ExportTask,
)
from notevault.core.file_ops.recipient import open_export, read_archive_members
from notevault.core.keys.key_manager import KeyManager
from notevault.core.keys.providers import DeterministicKeyProvider
from notevault.core.notes.models import Note, NotePayload, RichText
from notevault.core.notes.note_service import NoteService
from notevault.db.vault_db import VaultDatabase

ATTACHMENT_TEXT = b"This is a test attachment file content."


@pytest.fixture
def test_note(notes: NoteService, attachments: AttachmentManager) -> Note:
    note = notes.create_note(
        NotePayload(
            title="Test Note",
            body=RichText.plain("Body of the test note"),
            tags=("test-tag",),
            pinned=False,
        )
    )
    attachments.create_attachment(note, ATTACHMENT_TEXT, content_type="text/plain")
    return notes.get_note(note.id)


class _BlockingNoteService(NoteService):
    """Holds load_payload() until released, so an export can be caught mid-flight."""

    __slots__ = ("started", "release")

    def __init__(self, database: VaultDatabase, key_manager: KeyManager) -> None:
        super().__init__(database, key_manager)
        self.started = threading.Event()
        self.release = threading.Event()

    def load_payload(self, note: Note, report: bool = True) -> NotePayload:
        self.started.set()
        self.release.wait(timeout=10)
        return super().load_payload(note, report)


@pytest.fixture
def blocking_notes(database: VaultDatabase, key_manager: KeyManager) -> _BlockingNoteService:
    return _BlockingNoteService(database, key_manager)


def _archive_files(export_dir: Path) -> list[Path]:
    if not export_dir.exists():
        return []
    return sorted(export_dir.iterdir())


def test_archive_has_exactly_three_members(
    exporter: ExportManager, test_note: Note, recipient_pem: str, export_dir: Path
) -> None:
    path = exporter.export(test_note, recipient_pem)

    assert path.parent == export_dir
    assert path.name.startswith("export_") and path.suffix == ".zip"
    with zipfile.ZipFile(path) as archive:
        assert sorted(archive.namelist()) == sorted([MANIFEST_MEMBER, PAYLOAD_MEMBER, KEY_MEMBER])
    assert _archive_files(export_dir) == [path]


def test_manifest_matches_ciphertext_framing(
    exporter: ExportManager, test_note: Note, recipient_pem: str
) -> None:
    manifest_bytes, sealed, _ = read_archive_members(exporter.export(test_note, recipient_pem))
    manifest = json.loads(manifest_bytes)
    frame = CryptoHelper.split_frame(sealed)

    assert manifest["version"] == "1.0"
    assert manifest["crypto"]["cipher"] == "AES-256-GCM"
    assert manifest["crypto"]["keyWrap"] == "RSA-OAEP-SHA256"
    assert b64decode(manifest["crypto"]["nonce"]) == frame.nonce
    assert b64decode(manifest["crypto"]["tag"]) == frame.tag


def test_test_note_scenario(
    exporter: ExportManager, test_note: Note, recipient_key: rsa.RSAPrivateKey, recipient_pem: str
) -> None:
    path = exporter.export(test_note, recipient_pem)
    manifest_bytes, sealed, wrapped_key = read_archive_members(path)
    manifest = json.loads(manifest_bytes)

    assert manifest["title"] == "Test Note"
    assert "test-tag" in manifest["tags"]
    assert manifest["pinned"] is False
    assert manifest["noteId"] == test_note.id

    export_key = unwrap_key(wrapped_key, recipient_key)
    assert len(export_key) == 32

    bundle = ExportBundle.from_bytes(CryptoHelper.open_bytes(sealed, export_key))
    assert bundle.payload.title == "Test Note"
    assert [a.data for a in bundle.attachments] == [ATTACHMENT_TEXT]
    assert bundle.attachments[0].content_type == "text/plain"


def test_open_export_recovers_note(
    exporter: ExportManager,
    notes: NoteService,
    test_note: Note,
    recipient_key: rsa.RSAPrivateKey,
    recipient_pem: str,
) -> None:
    opened = open_export(exporter.export(test_note, recipient_pem), recipient_key)

    assert opened.payload == notes.load_payload(test_note)
    assert opened.manifest.note_id == test_note.id
    assert [a.data for a in opened.attachments] == [ATTACHMENT_TEXT]


def test_export_key_is_not_the_content_key(
    exporter: ExportManager,
    key_manager: KeyManager,
    test_note: Note,
    recipient_key: rsa.RSAPrivateKey,
    recipient_pem: str,
) -> None:
    _, _, wrapped_key = read_archive_members(exporter.export(test_note, recipient_pem))

    assert unwrap_key(wrapped_key, recipient_key) != key_manager.get_content_key(test_note.id)


def test_exports_are_not_linkable(
    exporter: ExportManager, test_note: Note, recipient_pem: str
) -> None:
    first = read_archive_members(exporter.export(test_note, recipient_pem))
    second = read_archive_members(exporter.export(test_note, recipient_pem))

    assert first[1] != second[1]
    assert first[2] != second[2]
    assert CryptoHelper.split_frame(first[1]).nonce != CryptoHelper.split_frame(second[1]).nonce


def test_der_recipient_key_is_accepted(
    exporter: ExportManager, test_note: Note, recipient_key: rsa.RSAPrivateKey
) -> None:
    path = exporter.export(test_note, public_key_to_der(recipient_key.public_key()))

    assert open_export(path, recipient_key).payload.title == "Test Note"


@pytest.mark.parametrize(
    "key_data",
    [
        b"",
        b"garbage",
        "-----BEGIN PUBLIC KEY-----\nZm9v\n-----END PUBLIC KEY-----",
        "-----BEGIN PUBLIC KEY-----\nÿ\n-----END PUBLIC KEY-----",
    ],
)
def test_bad_recipient_key_writes_nothing(
    exporter: ExportManager,
    test_note: Note,
    export_dir: Path,
    reporter: ErrorReporter,
    key_data: bytes | str,
) -> None:
    with pytest.raises(KeyWrapError):
        exporter.export(test_note, key_data)

    assert _archive_files(export_dir) == []
    assert reporter.last_report is not None
    assert reporter.last_report.error_type == "KeyWrapError"


def test_small_recipient_key_is_rejected(
    exporter: ExportManager, test_note: Note, export_dir: Path
) -> None:
    small = rsa.generate_private_key(public_exponent=65537, key_size=1024)

    with pytest.raises(KeyWrapError):
        exporter.export(test_note, public_key_to_pem(small.public_key()))

    assert _archive_files(export_dir) == []


def test_undecryptable_note_raises_decryption_error(
    database: VaultDatabase,
    identity_key: rsa.RSAPrivateKey,
    test_note: Note,
    export_dir: Path,
    recipient_pem: str,
) -> None:
    # Same database, different content keys
    wrong_keys = KeyManager(DeterministicKeyProvider(seed=b"another-seed-of-16+bytes", identity=identity_key))
    reporter = ErrorReporter()
    manager = ExportManager(
        NoteService(database, wrong_keys),
        AttachmentManager(database, wrong_keys),
        export_dir,
        error_reporter=reporter,
    )
    try:
        with pytest.raises(DecryptionError) as excinfo:
            manager.export(test_note, recipient_pem)
    finally:
        manager.shutdown()

    assert isinstance(excinfo.value.__cause__, AuthenticationFailure)
    assert _archive_files(export_dir) == []
    assert reporter.last_report is not None
    assert reporter.last_report.error_type == "DecryptionError"


def test_export_uses_stored_note_not_stale_handle(
    exporter: ExportManager,
    notes: NoteService,
    recipient_key: rsa.RSAPrivateKey,
    recipient_pem: str,
) -> None:
    draft = notes.create_note(NotePayload(title="Draft", tags=("a",)))
    notes.update_payload(draft, NotePayload(title="Final", tags=("b",)))

    opened = open_export(exporter.export(draft, recipient_pem), recipient_key)

    assert opened.manifest.title == "Final"
    assert opened.manifest.tags == ("b",)
    assert opened.payload.title == "Final"


def test_deleted_note_is_not_exported(
    exporter: ExportManager,
    notes: NoteService,
    test_note: Note,
    export_dir: Path,
    reporter: ErrorReporter,
    recipient_pem: str,
) -> None:
    notes.delete_note(test_note)

    with pytest.raises(NoteNotFoundError):
        exporter.export(test_note, recipient_pem)

    assert _archive_files(export_dir) == []
    assert reporter.last_report is not None
    assert reporter.last_report.error_type == "NoteNotFoundError"


def test_tampered_attachment_is_reported_once(
    exporter: ExportManager,
    test_note: Note,
    tmp_path: Path,
    reporter: ErrorReporter,
    recipient_pem: str,
) -> None:
    with sqlite3.connect(tmp_path / "vault.db") as conn:
        (blob,) = conn.execute(
            "SELECT encrypted_data FROM attachments WHERE note_id = ?", (test_note.id,)
        ).fetchone()
        tampered = bytearray(blob)
        tampered[-1] ^= 0xFF
        conn.execute(
            "UPDATE attachments SET encrypted_data = ? WHERE note_id = ?",
            (bytes(tampered), test_note.id),
        )

    with pytest.raises(DecryptionError):
        exporter.export(test_note, recipient_pem)

    assert [report.error_type for report in reporter.history] == ["DecryptionError"]


def test_tampered_archive_is_rejected(
    exporter: ExportManager,
    test_note: Note,
    recipient_key: rsa.RSAPrivateKey,
    recipient_pem: str,
    tmp_path: Path,
) -> None:
    manifest_bytes, sealed, wrapped_key = read_archive_members(exporter.export(test_note, recipient_pem))
    tampered = bytearray(sealed)
    tampered[len(tampered) // 2] ^= 0x01

    forged = tmp_path / "forged.zip"
    with zipfile.ZipFile(forged, "w") as archive:
        archive.writestr(MANIFEST_MEMBER, manifest_bytes)
        archive.writestr(PAYLOAD_MEMBER, bytes(tampered))
        archive.writestr(KEY_MEMBER, wrapped_key)

    with pytest.raises(AuthenticationFailure):
        open_export(forged, recipient_key)


def test_manifest_mismatch_is_rejected(
    exporter: ExportManager,
    test_note: Note,
    recipient_key: rsa.RSAPrivateKey,
    recipient_pem: str,
    tmp_path: Path,
) -> None:
    first = read_archive_members(exporter.export(test_note, recipient_pem))
    second = read_archive_members(exporter.export(test_note, recipient_pem))

    mixed = tmp_path / "mixed.zip"
    with zipfile.ZipFile(mixed, "w") as archive:
        archive.writestr(MANIFEST_MEMBER, second[0])
        archive.writestr(PAYLOAD_MEMBER, first[1])
        archive.writestr(KEY_MEMBER, first[2])

    with pytest.raises(AuthenticationFailure, match="Manifest"):
        open_export(mixed, recipient_key)


def test_wrong_private_key_cannot_open(
    exporter: ExportManager, test_note: Note, recipient_pem: str
) -> None:
    path = exporter.export(test_note, recipient_pem)

    with pytest.raises(KeyWrapError):
        open_export(path, generate_rsa_private_key())


def test_export_async_returns_archive(
    exporter: ExportManager, test_note: Note, recipient_key: rsa.RSAPrivateKey, recipient_pem: str
) -> None:
    completed: list[ExportTask] = []
    finished = threading.Event()

    def on_complete(task: ExportTask) -> None:
        completed.append(task)
        finished.set()

    task = exporter.export_async(test_note, recipient_pem, on_complete=on_complete)
    path = task.result(timeout=30)

    assert finished.wait(timeout=5)
    assert completed == [task]
    assert task.done()
    assert open_export(path, recipient_key).payload.title == "Test Note"


def test_export_async_propagates_failures(
    exporter: ExportManager, test_note: Note, export_dir: Path
) -> None:
    task = exporter.export_async(test_note, b"not a key")

    with pytest.raises(KeyWrapError):
        task.result(timeout=30)
    assert _archive_files(export_dir) == []


def test_cancelled_export_leaves_no_archive(
    blocking_notes: _BlockingNoteService,
    attachments: AttachmentManager,
    test_note: Note,
    export_dir: Path,
    recipient_pem: str,
) -> None:
    manager = ExportManager(blocking_notes, attachments, export_dir)

    try:
        task = manager.export_async(test_note, recipient_pem)
        assert blocking_notes.started.wait(timeout=10)

        assert task.cancel() is True
        assert task.cancel_requested
        blocking_notes.release.set()

        with pytest.raises(ExportCancelled):
            task.result(timeout=30)
    finally:
        blocking_notes.release.set()
        manager.shutdown()

    assert _archive_files(export_dir) == []


def test_cancel_before_start_raises_cancelled(
    blocking_notes: _BlockingNoteService,
    attachments: AttachmentManager,
    test_note: Note,
    export_dir: Path,
    recipient_pem: str,
) -> None:
    manager = ExportManager(blocking_notes, attachments, export_dir, max_workers=1)

    try:
        running = manager.export_async(test_note, recipient_pem)
        queued = manager.export_async(test_note, recipient_pem)

        assert queued.cancel() is True
        blocking_notes.release.set()

        with pytest.raises(ExportCancelled):
            queued.result(timeout=30)
        assert running.result(timeout=30).exists()
    finally:
        blocking_notes.release.set()
        manager.shutdown()

    assert len(_archive_files(export_dir)) == 1


def test_unwritable_export_dir_raises_vault_io_error(
    notes: NoteService, attachments: AttachmentManager, test_note: Note, recipient_pem: str, tmp_path: Path
) -> None:
    blocker = tmp_path / "not-a-directory"
    blocker.write_text("occupied")
    manager = ExportManager(notes, attachments, blocker / "exports")

    try:
        with pytest.raises(VaultIOError):
            manager.export(test_note, recipient_pem)
    finally:
        manager.shutdown()
