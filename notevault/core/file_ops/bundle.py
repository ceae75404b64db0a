"""
Export Bundle Format
====================

The plaintext sealed inside export.enc. Self-describing, so a recipient
can recover the note and every attachment byte-for-byte.

Format:
    MAGIC (4)            b"NVB1"
    HEADER_LEN (4)       uint32, little-endian
    HEADER               UTF-8 canonical JSON:
                           {
                             "version": 1,
                             "note": <NotePayload dict>,
                             "bodyHtml": <escaped HTML of the body>,
                             "attachments": [
                               {"id", "contentType", "size", "sha256"}, ...
                             ]
                           }
    ATTACHMENT DATA      raw bytes of each attachment, concatenated in
                         header order; lengths come from "size"

Decoding checks the magic, that the sizes account for every remaining
byte, and each attachment's SHA-256.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import struct
from dataclasses import dataclass, field
from typing import Final, List

from notevault.core.crypto.crypto_helper import canonical_json
from notevault.core.errors import DeserializationError
from notevault.core.notes.models import NotePayload

BUNDLE_MAGIC: Final[bytes] = b"NVB1"
BUNDLE_VERSION: Final[int] = 1
_PREFIX_SIZE: Final[int] = 8  # MAGIC(4) + HEADER_LEN(4)


@dataclass(frozen=True, slots=True)
class BundledAttachment:
    id: str
    content_type: str
    data: bytes

    def __repr__(self) -> str:
        return f"BundledAttachment(id={self.id!r}, size={len(self.data)})"


@dataclass(frozen=True, slots=True)
class ExportBundle:
    """A note payload plus the decrypted bytes of its attachments."""

    payload: NotePayload
    attachments: List[BundledAttachment] = field(default_factory=list)

    def to_bytes(self) -> bytes:
        header = {
            "version": BUNDLE_VERSION,
            "note": self.payload.to_dict(),
            "bodyHtml": self.payload.body.to_html(),
            "attachments": [
                {
                    "id": item.id,
                    "contentType": item.content_type,
                    "size": len(item.data),
                    "sha256": hashlib.sha256(item.data).hexdigest(),
                }
                for item in self.attachments
            ],
        }
        header_bytes = canonical_json(header)

        parts = [BUNDLE_MAGIC, struct.pack("<I", len(header_bytes)), header_bytes]
        parts.extend(item.data for item in self.attachments)
        return b"".join(parts)

    @classmethod
    def from_bytes(cls, data: bytes) -> ExportBundle:
        """
        Decode a bundle.

        Raises:
            DeserializationError: If the data is not a well-formed bundle
        """
        if len(data) < _PREFIX_SIZE or data[:4] != BUNDLE_MAGIC:
            raise DeserializationError("Invalid bundle: bad magic bytes")

        (header_len,) = struct.unpack_from("<I", data, 4)
        header_end = _PREFIX_SIZE + header_len
        if header_end > len(data):
            raise DeserializationError("Invalid bundle: truncated header")

        try:
            header = json.loads(data[_PREFIX_SIZE:header_end].decode("utf-8"))
            if header["version"] != BUNDLE_VERSION:
                raise DeserializationError(f"Unsupported bundle version: {header['version']}")
            payload = NotePayload.from_dict(header["note"])
            specs = [
                (str(entry["id"]), str(entry["contentType"]), int(entry["size"]), str(entry["sha256"]))
                for entry in header["attachments"]
            ]
        except DeserializationError:
            raise
        except (UnicodeDecodeError, ValueError, TypeError, KeyError) as e:
            raise DeserializationError("Invalid bundle header") from e

        sizes = [size for _, _, size, _ in specs]
        if any(size < 0 for size in sizes) or header_end + sum(sizes) != len(data):
            raise DeserializationError("Invalid bundle: attachment sizes do not match data")

        attachments = []
        offset = header_end
        for attachment_id, content_type, size, expected_digest in specs:
            blob = data[offset : offset + size]
            offset += size

            digest = hashlib.sha256(blob).hexdigest()
            if not hmac.compare_digest(digest.encode("ascii"), expected_digest.encode("utf-8")):
                raise DeserializationError(f"Attachment {attachment_id!r} failed its digest check")

            attachments.append(
                BundledAttachment(
                    id=attachment_id,
                    content_type=content_type,
                    data=bytes(blob),
                )
            )

        return cls(payload=payload, attachments=attachments)

    def __repr__(self) -> str:
        return f"ExportBundle(attachments={len(self.attachments)})"
