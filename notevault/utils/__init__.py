"""
Utility module - Validation and path helpers.
"""

from notevault.utils.validators import ValidationError, validate_note_id, validate_tag_name

__all__ = ["ValidationError", "validate_note_id", "validate_tag_name"]
