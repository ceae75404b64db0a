from __future__ import annotations

import json
import struct
from base64 import b64encode
from datetime import datetime, timezone

import pytest

from notevault.core.errors import DeserializationError
from notevault.core.file_ops.bundle import BUNDLE_MAGIC, BundledAttachment, ExportBundle
from notevault.core.file_ops.manifest import ExportManifest, format_manifest_timestamp
from notevault.core.notes.models import NotePayload, RichText


def _bundle() -> ExportBundle:
    return ExportBundle(
        payload=NotePayload(title="Recipe", body=RichText.plain("Flour & water"), tags=("food",)),
        attachments=[
            BundledAttachment(id="a1", content_type="image/png", data=b"\x89PNG fake"),
            BundledAttachment(id="a2", content_type="text/plain", data=b""),
            BundledAttachment(id="a3", content_type="application/octet-stream", data=bytes(range(256))),
        ],
    )


def test_bundle_round_trip() -> None:
    bundle = _bundle()

    decoded = ExportBundle.from_bytes(bundle.to_bytes())

    assert decoded.payload == bundle.payload
    assert decoded.attachments == bundle.attachments


def test_bundle_header_carries_html_body() -> None:
    data = _bundle().to_bytes()
    (header_len,) = struct.unpack_from("<I", data, 4)
    header = json.loads(data[8 : 8 + header_len])

    assert data[:4] == BUNDLE_MAGIC
    assert header["bodyHtml"] == "<p>Flour &amp; water</p>"
    assert [entry["size"] for entry in header["attachments"]] == [9, 0, 256]


def test_bundle_rejects_bad_magic() -> None:
    with pytest.raises(DeserializationError, match="magic"):
        ExportBundle.from_bytes(b"ZZZZ" + _bundle().to_bytes()[4:])


def test_bundle_rejects_trailing_or_missing_bytes() -> None:
    data = _bundle().to_bytes()

    with pytest.raises(DeserializationError):
        ExportBundle.from_bytes(data + b"x")
    with pytest.raises(DeserializationError):
        ExportBundle.from_bytes(data[:-1])


def test_bundle_rejects_corrupted_attachment() -> None:
    data = bytearray(_bundle().to_bytes())
    data[-1] ^= 0xFF

    with pytest.raises(DeserializationError, match="digest"):
        ExportBundle.from_bytes(bytes(data))


def test_bundle_rejects_garbage_header() -> None:
    header = b'{"version": 1, "note": {}}'
    data = BUNDLE_MAGIC + struct.pack("<I", len(header)) + header

    with pytest.raises(DeserializationError):
        ExportBundle.from_bytes(data)


def test_manifest_json_shape() -> None:
    payload = NotePayload(
        title="Test Note",
        tags=("test-tag",),
        created_at=datetime(2025, 8, 22, 10, 0, 0, 123456, tzinfo=timezone.utc),
        updated_at=datetime(2025, 8, 22, 10, 5, 0, tzinfo=timezone.utc),
    )
    manifest = ExportManifest.for_payload("0b7e", payload, b"n" * 12, b"t" * 16)

    data = json.loads(manifest.to_json())

    assert data == {
        "version": "1.0",
        "noteId": "0b7e",
        "title": "Test Note",
        "tags": ["test-tag"],
        "createdAt": "2025-08-22T10:00:00Z",
        "updatedAt": "2025-08-22T10:05:00Z",
        "pinned": False,
        "crypto": {
            "cipher": "AES-256-GCM",
            "keyWrap": "RSA-OAEP-SHA256",
            "nonce": b64encode(b"n" * 12).decode(),
            "tag": b64encode(b"t" * 16).decode(),
        },
    }
    assert ExportManifest.from_json(manifest.to_json()) == manifest


def test_manifest_rejects_wrong_nonce_size() -> None:
    payload = NotePayload(title="x")
    data = ExportManifest.for_payload("id", payload, b"n" * 11, b"t" * 16).to_json()

    with pytest.raises(DeserializationError):
        ExportManifest.from_json(data)


def test_manifest_rejects_missing_fields() -> None:
    with pytest.raises(DeserializationError):
        ExportManifest.from_json(b'{"version": "1.0"}')


def test_manifest_timestamps_are_utc_seconds() -> None:
    naive = datetime(2024, 1, 2, 3, 4, 5, 999999)

    assert format_manifest_timestamp(naive) == "2024-01-02T03:04:05Z"


@pytest.mark.parametrize("pinned", ["false", 0, None])
def test_manifest_rejects_non_boolean_pinned(pinned: object) -> None:
    payload = NotePayload(title="x")
    raw = json.loads(ExportManifest.for_payload("id", payload, b"n" * 12, b"t" * 16).to_json())
    raw["pinned"] = pinned

    with pytest.raises(DeserializationError):
        ExportManifest.from_json(json.dumps(raw))
