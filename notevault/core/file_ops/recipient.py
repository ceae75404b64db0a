"""
Export Reader
=============

Opens an export archive with the recipient's RSA private key.

Verification Order:
    1. All three members are present and the manifest parses
    2. key.enc unwraps to a 32-byte export key
    3. The manifest nonce and tag equal the ones framing export.enc
    4. export.enc authenticates under the export key
    5. The bundle decodes and every attachment digest matches
"""

from __future__ import annotations

import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from cryptography.hazmat.primitives.asymmetric import rsa

from notevault.core.crypto.aes_gcm import AesGcmCipher
from notevault.core.crypto.crypto_helper import CryptoHelper
from notevault.core.crypto.key_wrap import unwrap_key
from notevault.core.errors import AuthenticationFailure, DeserializationError, VaultIOError
from notevault.core.file_ops.bundle import BundledAttachment, ExportBundle
from notevault.core.file_ops.export import KEY_MEMBER, MANIFEST_MEMBER, PAYLOAD_MEMBER
from notevault.core.file_ops.manifest import ExportManifest
from notevault.core.notes.models import NotePayload


@dataclass(frozen=True, slots=True)
class OpenedExport:
    manifest: ExportManifest
    payload: NotePayload
    attachments: List[BundledAttachment] = field(default_factory=list)

    def __repr__(self) -> str:
        return f"OpenedExport(note_id={self.manifest.note_id!r}, attachments={len(self.attachments)})"


def read_archive_members(archive_path: Path | str) -> tuple[bytes, bytes, bytes]:
    """
    Read (manifest.json, export.enc, key.enc) from an archive.

    Raises:
        VaultIOError: If the file cannot be read
        DeserializationError: Not a zip archive, or a member is missing
    """
    try:
        with zipfile.ZipFile(archive_path, "r") as archive:
            return (
                archive.read(MANIFEST_MEMBER),
                archive.read(PAYLOAD_MEMBER),
                archive.read(KEY_MEMBER),
            )
    except (zipfile.BadZipFile, KeyError) as e:
        raise DeserializationError(f"Not a valid export archive: {e}") from e
    except OSError as e:
        raise VaultIOError(f"Cannot read export archive: {e.strerror or e}") from e


def open_export(archive_path: Path | str, private_key: rsa.RSAPrivateKey) -> OpenedExport:
    """
    Decrypt and verify an export archive.

    Args:
        archive_path: Path of the zip produced by ExportManager.export()
        private_key: The recipient's RSA private key

    Returns:
        OpenedExport with the manifest, note payload and attachments

    Raises:
        KeyWrapError: key.enc does not unwrap with this private key
        AuthenticationFailure: Ciphertext tampered or manifest mismatch
        DeserializationError: Archive, manifest or bundle malformed
        VaultIOError: Archive unreadable
    """
    manifest_bytes, sealed, wrapped_key = read_archive_members(archive_path)
    manifest = ExportManifest.from_json(manifest_bytes)

    export_key = unwrap_key(wrapped_key, private_key)

    frame = CryptoHelper.split_frame(sealed)
    if not (
        AesGcmCipher.constant_time_compare(frame.nonce, manifest.nonce)
        and AesGcmCipher.constant_time_compare(frame.tag, manifest.tag)
    ):
        raise AuthenticationFailure("Manifest nonce/tag do not match export.enc")

    bundle = ExportBundle.from_bytes(CryptoHelper.open_bytes(sealed, export_key))

    return OpenedExport(
        manifest=manifest,
        payload=bundle.payload,
        attachments=list(bundle.attachments),
    )
