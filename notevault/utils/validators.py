"""
Validation Utilities
====================

Input validation for identifiers and names entering the vault.
"""

from __future__ import annotations

import uuid
from typing import Final

MAX_TAG_LENGTH: Final[int] = 128


class ValidationError(ValueError):
    """Raised when validation fails."""
    pass


def validate_note_id(note_id: str) -> str:
    """
    Validate and canonicalize a note identifier.

    Args:
        note_id: UUID string in any standard form

    Returns:
        Lower-case hyphenated UUID string

    Raises:
        ValidationError: If note_id is not a UUID
    """
    if not isinstance(note_id, str):
        raise ValidationError("Note id must be a string")
    try:
        return str(uuid.UUID(note_id))
    except ValueError as e:
        raise ValidationError(f"Invalid note id: {note_id!r}") from e


def validate_tag_name(name: str) -> str:
    """
    Validate a tag name.

    Returns:
        The trimmed name

    Raises:
        ValidationError: If the name is empty, too long or contains control characters
    """
    if not isinstance(name, str):
        raise ValidationError("Tag name must be a string")

    name = name.strip()
    if not name:
        raise ValidationError("Tag name cannot be empty")
    if len(name) > MAX_TAG_LENGTH:
        raise ValidationError(f"Tag name must be at most {MAX_TAG_LENGTH} characters")
    if any(ord(ch) < 0x20 for ch in name):
        raise ValidationError("Tag name contains invalid characters")

    return name
