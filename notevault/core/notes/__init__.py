"""
Note models and the encrypted note service.
"""

from notevault.core.notes.models import Attachment, Note, NotePayload, RichText, Tag, TextRun
from notevault.core.notes.note_service import NoteService

__all__ = ["Attachment", "Note", "NotePayload", "RichText", "Tag", "TextRun", "NoteService"]
