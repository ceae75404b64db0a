"""
Note Data Model
===============

Plain data types for notes, tags and attachments.

NotePayload is the only type that carries note content. It is never
written anywhere unencrypted: the persisted Note holds it as framed
ciphertext and exposes only the plaintext tag index.
"""

from __future__ import annotations

import html
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Final, Iterable, Optional

RUN_STYLES: Final[frozenset[str]] = frozenset({
    "bold", "italic", "underline", "strikethrough", "code",
})

_HTML_TAGS: Final[dict[str, str]] = {
    "bold": "strong",
    "italic": "em",
    "underline": "u",
    "strikethrough": "s",
    "code": "code",
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Normalize to an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Full-precision ISO-8601 used inside encrypted payloads."""
    return to_utc(value).isoformat(timespec="microseconds")


def parse_timestamp(value: str) -> datetime:
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return to_utc(datetime.fromisoformat(value))


def normalize_tags(tags: Iterable[str]) -> tuple[str, ...]:
    """Trim, drop empties and duplicates, and sort a tag collection."""
    cleaned = {tag.strip() for tag in tags}
    cleaned.discard("")
    return tuple(sorted(cleaned))


@dataclass(frozen=True, slots=True)
class TextRun:
    """A span of body text sharing one set of styles."""

    text: str
    styles: frozenset[str] = frozenset()
    link: Optional[str] = None

    def __post_init__(self) -> None:
        unknown = set(self.styles) - RUN_STYLES
        if unknown:
            raise ValueError(f"Unknown text styles: {sorted(unknown)}")
        object.__setattr__(self, "styles", frozenset(self.styles))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"text": self.text, "styles": sorted(self.styles)}
        if self.link is not None:
            data["link"] = self.link
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TextRun:
        return cls(
            text=data["text"],
            styles=frozenset(data.get("styles", [])),
            link=data.get("link"),
        )


@dataclass(frozen=True, slots=True)
class RichText:
    """
    Structured note body: an ordered sequence of styled runs.

    Only the structure needed to round-trip a note is modelled; there
    is no layout or document rendering beyond to_html(), which emits
    escaped inline markup for the export bundle.
    """

    runs: tuple[TextRun, ...] = ()

    @classmethod
    def plain(cls, text: str) -> RichText:
        return cls(runs=(TextRun(text),) if text else ())

    def plain_text(self) -> str:
        return "".join(run.text for run in self.runs)

    def to_html(self) -> str:
        parts = []
        for run in self.runs:
            fragment = html.escape(run.text).replace("\n", "<br>")
            for style in sorted(run.styles):
                tag = _HTML_TAGS[style]
                fragment = f"<{tag}>{fragment}</{tag}>"
            if run.link is not None:
                fragment = f'<a href="{html.escape(run.link, quote=True)}">{fragment}</a>'
            parts.append(fragment)
        return "<p>" + "".join(parts) + "</p>"

    def to_dict(self) -> dict[str, Any]:
        return {"runs": [run.to_dict() for run in self.runs]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RichText:
        return cls(runs=tuple(TextRun.from_dict(run) for run in data["runs"]))


@dataclass(frozen=True, slots=True)
class NotePayload:
    """
    The encrypted content of a note.

    Tags are kept as a sorted tuple of unique names so that logically
    identical payloads serialize to identical bytes.
    """

    title: str
    body: RichText = field(default_factory=RichText)
    tags: tuple[str, ...] = ()
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    pinned: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "tags", normalize_tags(self.tags))
        object.__setattr__(self, "created_at", to_utc(self.created_at))
        object.__setattr__(self, "updated_at", to_utc(self.updated_at))

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "body": self.body.to_dict(),
            "tags": list(self.tags),
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
            "pinned": self.pinned,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NotePayload:
        pinned = data["pinned"]
        if not isinstance(pinned, bool):
            raise TypeError("pinned must be a boolean")
        title = data["title"]
        if not isinstance(title, str):
            raise TypeError("title must be a string")
        return cls(
            title=title,
            body=RichText.from_dict(data["body"]),
            tags=tuple(data["tags"]),
            created_at=parse_timestamp(data["createdAt"]),
            updated_at=parse_timestamp(data["updatedAt"]),
            pinned=pinned,
        )

    def __repr__(self) -> str:
        # Titles and bodies stay out of reprs (and therefore out of logs)
        return f"NotePayload(tags={len(self.tags)}, pinned={self.pinned})"


@dataclass(frozen=True, slots=True)
class Note:
    """
    A persisted note record.

    Attributes:
        id: Stable UUID string
        encrypted_data: Framed ciphertext of a NotePayload
        tags: Plaintext tag index; always equal to the payload's tags
        attachment_count: Number of attachments linked to this note
    """

    id: str
    encrypted_data: bytes
    tags: tuple[str, ...] = ()
    attachment_count: int = 0
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __repr__(self) -> str:
        return f"Note(id={self.id!r}, tags={len(self.tags)}, attachments={self.attachment_count})"


@dataclass(frozen=True, slots=True)
class Tag:
    id: str
    name: str
    created_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True, slots=True)
class Attachment:
    """
    An encrypted attachment linked to one note.

    encrypted_data is framed ciphertext under the owning note's
    content key.
    """

    id: str
    note_id: str
    content_type: str
    encrypted_data: bytes
    size: int
    created_at: datetime = field(default_factory=utc_now)

    def __repr__(self) -> str:
        return (
            f"Attachment(id={self.id!r}, note_id={self.note_id!r}, "
            f"content_type={self.content_type!r}, size={self.size})"
        )
