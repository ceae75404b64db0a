"""
Export Manifest
===============

Cleartext metadata written as manifest.json next to the ciphertext, so a
recipient can preview an export without decrypting it.

    {
      "version": "1.0",
      "noteId": "...",
      "title": "...",
      "tags": ["..."],
      "createdAt": "2025-08-22T10:00:00Z",
      "updatedAt": "2025-08-22T10:05:00Z",
      "pinned": false,
      "crypto": {
        "cipher": "AES-256-GCM",
        "keyWrap": "RSA-OAEP-SHA256",
        "nonce": "<base64, 12 bytes>",
        "tag": "<base64, 16 bytes>"
      }
    }
"""

from __future__ import annotations

import binascii
import json
from base64 import b64decode, b64encode
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Final

from notevault.core.crypto.aes_gcm import AES_NONCE_SIZE, AES_TAG_SIZE
from notevault.core.crypto.key_wrap import KEY_WRAP_ALGORITHM
from notevault.core.errors import DeserializationError
from notevault.core.notes.models import NotePayload, parse_timestamp, to_utc

MANIFEST_VERSION: Final[str] = "1.0"
CIPHER_NAME: Final[str] = "AES-256-GCM"


def format_manifest_timestamp(value: datetime) -> str:
    """ISO-8601 UTC with second precision and a Z suffix."""
    return to_utc(value).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True, slots=True)
class ExportManifest:
    note_id: str
    title: str
    tags: tuple[str, ...]
    created_at: str
    updated_at: str
    pinned: bool
    nonce: bytes
    tag: bytes
    version: str = MANIFEST_VERSION
    cipher: str = CIPHER_NAME
    key_wrap: str = KEY_WRAP_ALGORITHM

    @classmethod
    def for_payload(
        cls,
        note_id: str,
        payload: NotePayload,
        nonce: bytes,
        tag: bytes,
    ) -> ExportManifest:
        return cls(
            note_id=note_id,
            title=payload.title,
            tags=payload.tags,
            created_at=format_manifest_timestamp(payload.created_at),
            updated_at=format_manifest_timestamp(payload.updated_at),
            pinned=payload.pinned,
            nonce=nonce,
            tag=tag,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "noteId": self.note_id,
            "title": self.title,
            "tags": list(self.tags),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "pinned": self.pinned,
            "crypto": {
                "cipher": self.cipher,
                "keyWrap": self.key_wrap,
                "nonce": b64encode(self.nonce).decode("ascii"),
                "tag": b64encode(self.tag).decode("ascii"),
            },
        }

    def to_json(self) -> bytes:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False).encode("utf-8")

    @classmethod
    def from_json(cls, data: bytes | str) -> ExportManifest:
        """
        Parse manifest.json.

        Raises:
            DeserializationError: Missing fields, bad base64, or wrong nonce/tag sizes
        """
        try:
            raw = json.loads(data)
            crypto = raw["crypto"]
            nonce = b64decode(crypto["nonce"], validate=True)
            tag = b64decode(crypto["tag"], validate=True)
            pinned = raw["pinned"]
            if not isinstance(pinned, bool):
                raise TypeError("pinned must be a boolean")
            manifest = cls(
                version=str(raw["version"]),
                note_id=str(raw["noteId"]),
                title=str(raw["title"]),
                tags=tuple(str(t) for t in raw["tags"]),
                created_at=str(raw["createdAt"]),
                updated_at=str(raw["updatedAt"]),
                pinned=pinned,
                cipher=str(crypto["cipher"]),
                key_wrap=str(crypto["keyWrap"]),
                nonce=nonce,
                tag=tag,
            )
            # Timestamps must at least parse
            parse_timestamp(manifest.created_at)
            parse_timestamp(manifest.updated_at)
        except (binascii.Error, ValueError, TypeError, KeyError) as e:
            raise DeserializationError("manifest.json is malformed") from e

        if len(manifest.nonce) != AES_NONCE_SIZE or len(manifest.tag) != AES_TAG_SIZE:
            raise DeserializationError("manifest.json has a wrong-size nonce or tag")

        return manifest

    def __repr__(self) -> str:
        return f"ExportManifest(v{self.version}, note_id={self.note_id!r})"
