"""
Note Export
===========

Hybrid-encryption export of a single note for an outside recipient.

Security Properties:
- A fresh 256-bit export key per export, never the note's content key
- The export key leaves the device only RSA-OAEP-SHA256 wrapped
- Two exports of the same note share no key, nonce or ciphertext
- Archives appear atomically: written to a hidden staging file and
  renamed into place, removed on any failure or cancellation

Archive Layout (zip):
    manifest.json   cleartext metadata (see manifest.py)
    export.enc      nonce (12) || ciphertext || tag (16) of the bundle
    key.enc         the wrapped export key

Steps:
    1. Load the recipient public key (nothing is written if it is bad)
    2. Reload the stored note, decrypt its payload and every attachment
    3. Assemble the bundle
    4. Seal it under a new export key
    5. Wrap the export key
    6. Build the manifest
    7. Write the archive
"""

from __future__ import annotations

import logging
import os
import threading
import zipfile
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Final, List, Optional, Union

from notevault.core.crypto.crypto_helper import CryptoHelper
from notevault.core.crypto.key_wrap import load_recipient_public_key, wrap_key
from notevault.core.errors import (
    AuthenticationFailure,
    DecryptionError,
    DeserializationError,
    ErrorReporter,
    ExportCancelled,
    NoteVaultError,
    VaultIOError,
)
from notevault.core.file_ops.attachments import AttachmentManager
from notevault.core.file_ops.bundle import BundledAttachment, ExportBundle
from notevault.core.file_ops.manifest import ExportManifest
from notevault.core.notes.models import Note
from notevault.core.notes.note_service import NoteService
from notevault.utils.paths import ensure_private_dir, staging_path_for, unique_export_path

MANIFEST_MEMBER: Final[str] = "manifest.json"
PAYLOAD_MEMBER: Final[str] = "export.enc"
KEY_MEMBER: Final[str] = "key.enc"

DEFAULT_MAX_WORKERS: Final[int] = 2

RecipientKeyData = Union[bytes, str]


class ExportTask:
    """
    Handle for an export running on the worker pool.

    Cancellation is cooperative: an export already running stops at its
    next step boundary with ExportCancelled and leaves no archive. An
    export that finishes before noticing the request still returns its
    path.
    """

    __slots__ = ("note_id", "_future", "_cancel_event")

    def __init__(self, note_id: str, future: Future, cancel_event: threading.Event) -> None:
        self.note_id = note_id
        self._future = future
        self._cancel_event = cancel_event

    def result(self, timeout: Optional[float] = None) -> Path:
        """
        Wait for the archive path.

        Raises:
            ExportCancelled: If the export was cancelled
            NoteVaultError: Whatever the export itself raised
            TimeoutError: If timeout elapses first
        """
        try:
            return self._future.result(timeout=timeout)
        except CancelledError as e:
            raise ExportCancelled(f"Export of note {self.note_id} was cancelled") from e

    def done(self) -> bool:
        return self._future.done()

    def cancel(self) -> bool:
        """Request cancellation. False if the export had already finished."""
        if self._future.done():
            return self._future.cancelled()
        self._cancel_event.set()
        self._future.cancel()
        return True

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    def __repr__(self) -> str:
        state = "done" if self.done() else "pending"
        return f"ExportTask(note_id={self.note_id!r}, {state})"


class ExportManager:
    """
    Produces recipient-encrypted export archives.

    Usage:
        exporter = ExportManager(notes, attachments, export_dir)

        path = exporter.export(note, recipient_pem)

        task = exporter.export_async(note, recipient_pem)
        path = task.result()

        exporter.shutdown()
    """

    __slots__ = (
        "_notes",
        "_attachments",
        "_export_dir",
        "_reporter",
        "_executor",
        "_log",
    )

    def __init__(
        self,
        note_service: NoteService,
        attachment_manager: AttachmentManager,
        export_dir: Path,
        error_reporter: Optional[ErrorReporter] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> None:
        self._notes = note_service
        self._attachments = attachment_manager
        self._export_dir = Path(export_dir)
        self._reporter = error_reporter or ErrorReporter()
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="notevault-export",
        )
        self._log = logging.getLogger("notevault.export")

    @property
    def export_dir(self) -> Path:
        return self._export_dir

    def export(self, note: Note, recipient_public_key_data: RecipientKeyData) -> Path:
        """
        Export a note on the calling thread.

        Args:
            note: Note to export
            recipient_public_key_data: Recipient RSA public key, PEM or DER

        Returns:
            Path of the new archive

        Raises:
            KeyWrapError: Malformed or unsupported recipient key, or wrap failure
            DecryptionError: The note or an attachment could not be decrypted
            NoteNotFoundError: The note was deleted before the export ran
            VaultIOError: The archive could not be written
        """
        return self._run(note, recipient_public_key_data, None)

    def export_async(
        self,
        note: Note,
        recipient_public_key_data: RecipientKeyData,
        on_complete: Optional[Callable[[ExportTask], None]] = None,
    ) -> ExportTask:
        """
        Export a note on the worker pool.

        Args:
            note: Note to export
            recipient_public_key_data: Recipient RSA public key, PEM or DER
            on_complete: Called with the task once it finishes, fails or is cancelled

        Returns:
            ExportTask for the running export
        """
        cancel_event = threading.Event()
        future = self._executor.submit(self._run, note, recipient_public_key_data, cancel_event)
        task = ExportTask(note.id, future, cancel_event)

        if on_complete is not None:
            future.add_done_callback(lambda _: on_complete(task))

        return task

    def shutdown(self, wait: bool = True, cancel_pending: bool = False) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=cancel_pending)

    def _run(
        self,
        note: Note,
        recipient_public_key_data: RecipientKeyData,
        cancel_event: Optional[threading.Event],
    ) -> Path:
        context = f"Exporting note {note.id}"
        try:
            public_key = load_recipient_public_key(recipient_public_key_data)
            self._check_cancelled(note, cancel_event)

            # The caller's handle may be stale; export what is stored now
            stored = self._notes.get_note(note.id)
            bundle = self._collect_bundle(stored)
            self._check_cancelled(note, cancel_event)

            export_key = CryptoHelper.generate_key()
            sealed = CryptoHelper.seal_bytes(bundle.to_bytes(), export_key)
            frame = CryptoHelper.split_frame(sealed)
            wrapped_key = wrap_key(export_key, public_key)
            del export_key

            manifest = ExportManifest.for_payload(stored.id, bundle.payload, frame.nonce, frame.tag)
            self._check_cancelled(note, cancel_event)

            path = self._write_archive(note, manifest, sealed, wrapped_key, cancel_event)

        except ExportCancelled:
            self._log.info("Export of note %s cancelled", note.id)
            raise
        except NoteVaultError as e:
            self._reporter.report(e, context=context)
            raise

        self._log.info(
            "Exported note %s with %d attachments to %s",
            note.id, len(bundle.attachments), path.name,
        )
        return path

    def _collect_bundle(self, note: Note) -> ExportBundle:
        try:
            payload = self._notes.load_payload(note, report=False)
            attachments: List[BundledAttachment] = [
                BundledAttachment(
                    id=attachment.id,
                    content_type=attachment.content_type,
                    data=self._attachments.read_attachment(attachment, report=False),
                )
                for attachment in self._attachments.list_attachments(note)
            ]
        except (AuthenticationFailure, DeserializationError) as e:
            raise DecryptionError(f"Note {note.id} could not be decrypted for export") from e

        return ExportBundle(payload=payload, attachments=attachments)

    def _write_archive(
        self,
        note: Note,
        manifest: ExportManifest,
        sealed: bytes,
        wrapped_key: bytes,
        cancel_event: Optional[threading.Event],
    ) -> Path:
        try:
            ensure_private_dir(self._export_dir)
            final_path = unique_export_path(self._export_dir)
            staging_path = staging_path_for(final_path)

            try:
                with zipfile.ZipFile(staging_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
                    archive.writestr(MANIFEST_MEMBER, manifest.to_json())
                    # Ciphertext does not compress
                    archive.writestr(PAYLOAD_MEMBER, sealed, compress_type=zipfile.ZIP_STORED)
                    archive.writestr(KEY_MEMBER, wrapped_key, compress_type=zipfile.ZIP_STORED)

                self._check_cancelled(note, cancel_event)
                os.replace(staging_path, final_path)
            except BaseException:
                self._discard(staging_path)
                raise

        except OSError as e:
            raise VaultIOError(f"Could not write export archive: {e.strerror or e}") from e

        return final_path

    def _discard(self, staging_path: Path) -> None:
        try:
            staging_path.unlink(missing_ok=True)
        except OSError as e:
            self._log.warning("Could not remove staging file %s: %s", staging_path.name, e.strerror)

    @staticmethod
    def _check_cancelled(note: Note, cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise ExportCancelled(f"Export of note {note.id} was cancelled")

    def __repr__(self) -> str:
        return f"ExportManager(export_dir={self._export_dir.name!r})"
