"""
Vault Database
==============

SQLite persistence for notes, the plaintext tag index, tags and
encrypted attachments.

Only opaque ciphertext is stored for note content and attachment bytes.
The tag index is the single plaintext mirror of payload data, and it is
always rewritten in the same transaction as the note's encrypted blob.
"""

from __future__ import annotations

import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Final, Iterable, List, Optional

from notevault.core.errors import NoteNotFoundError
from notevault.core.notes.models import Attachment, Note, Tag


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class VaultDatabase:
    """Note store, tag index and attachment records."""

    _SCHEMA: Final[str] = """
    CREATE TABLE IF NOT EXISTS notes (
        id TEXT PRIMARY KEY,
        encrypted_data BLOB NOT NULL,
        attachment_count INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );
    CREATE TABLE IF NOT EXISTS tags (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL UNIQUE,
        created_at TEXT NOT NULL
    );
    CREATE TABLE IF NOT EXISTS note_tags (
        note_id TEXT NOT NULL REFERENCES notes(id) ON DELETE CASCADE,
        tag_id TEXT NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
        PRIMARY KEY (note_id, tag_id)
    );
    CREATE TABLE IF NOT EXISTS attachments (
        id TEXT PRIMARY KEY,
        note_id TEXT NOT NULL REFERENCES notes(id) ON DELETE CASCADE,
        content_type TEXT NOT NULL,
        encrypted_data BLOB NOT NULL,
        size INTEGER NOT NULL,
        created_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_attachments_note ON attachments(note_id);
    CREATE INDEX IF NOT EXISTS idx_note_tags_tag ON note_tags(tag_id);
    """

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path)
        self.initialize_db()

    def _get_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def initialize_db(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._get_connection() as conn:
            conn.executescript(self._SCHEMA)

    # --- Notes -----------------------------------------------------------

    def put_note(
        self,
        note_id: str,
        encrypted_data: bytes,
        tags: Iterable[str],
    ) -> Note:
        """
        Insert or replace a note's blob and its tag index atomically.

        Tags no longer referenced by any note are removed in the same
        transaction.
        """
        tag_names = sorted(set(tags))
        now = _now()

        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO notes (id, encrypted_data, attachment_count, created_at, updated_at)
                VALUES (?, ?, 0, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    encrypted_data = excluded.encrypted_data,
                    updated_at = excluded.updated_at
                """,
                (note_id, encrypted_data, now, now),
            )

            conn.execute("DELETE FROM note_tags WHERE note_id = ?", (note_id,))
            for name in tag_names:
                tag_id = self._ensure_tag(conn, name)
                conn.execute(
                    "INSERT INTO note_tags (note_id, tag_id) VALUES (?, ?)",
                    (note_id, tag_id),
                )

            self._delete_orphaned_tags(conn)

            row = conn.execute("SELECT * FROM notes WHERE id = ?", (note_id,)).fetchone()
            return self._row_to_note(conn, row)

    def get_note(self, note_id: str) -> Optional[Note]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM notes WHERE id = ?", (note_id,)).fetchone()
            if not row:
                return None
            return self._row_to_note(conn, row)

    def require_note(self, note_id: str) -> Note:
        note = self.get_note(note_id)
        if note is None:
            raise NoteNotFoundError(f"No note with id {note_id!r}")
        return note

    def list_note_ids(self) -> List[str]:
        with self._get_connection() as conn:
            rows = conn.execute("SELECT id FROM notes ORDER BY updated_at DESC").fetchall()
        return [row["id"] for row in rows]

    def delete_note(self, note_id: str) -> None:
        """Remove a note with its tag links and attachments."""
        with self._get_connection() as conn:
            conn.execute("DELETE FROM notes WHERE id = ?", (note_id,))
            self._delete_orphaned_tags(conn)

    # --- Tags ------------------------------------------------------------

    def get_or_create_tag(self, name: str) -> Tag:
        with self._get_connection() as conn:
            self._ensure_tag(conn, name)
            row = conn.execute("SELECT * FROM tags WHERE name = ?", (name,)).fetchone()
        return self._row_to_tag(row)

    def list_tags(self) -> List[Tag]:
        with self._get_connection() as conn:
            rows = conn.execute("SELECT * FROM tags ORDER BY name").fetchall()
        return [self._row_to_tag(row) for row in rows]

    @staticmethod
    def _ensure_tag(conn: sqlite3.Connection, name: str) -> str:
        row = conn.execute("SELECT id FROM tags WHERE name = ?", (name,)).fetchone()
        if row:
            return row["id"]
        tag_id = str(uuid.uuid4())
        conn.execute(
            "INSERT INTO tags (id, name, created_at) VALUES (?, ?, ?)",
            (tag_id, name, _now()),
        )
        return tag_id

    @staticmethod
    def _delete_orphaned_tags(conn: sqlite3.Connection) -> int:
        cursor = conn.execute(
            "DELETE FROM tags WHERE id NOT IN (SELECT DISTINCT tag_id FROM note_tags)"
        )
        return cursor.rowcount

    # --- Attachments -----------------------------------------------------

    def add_attachment(self, attachment: Attachment) -> int:
        """
        Store an attachment record and bump its note's attachment count.

        Returns:
            The note's new attachment count
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                "UPDATE notes SET attachment_count = attachment_count + 1 WHERE id = ?",
                (attachment.note_id,),
            )
            if cursor.rowcount == 0:
                raise NoteNotFoundError(f"No note with id {attachment.note_id!r}")

            conn.execute(
                """
                INSERT INTO attachments (id, note_id, content_type, encrypted_data, size, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    attachment.id,
                    attachment.note_id,
                    attachment.content_type,
                    attachment.encrypted_data,
                    attachment.size,
                    attachment.created_at.isoformat(),
                ),
            )

            row = conn.execute(
                "SELECT attachment_count FROM notes WHERE id = ?", (attachment.note_id,)
            ).fetchone()
            return row["attachment_count"]

    def list_attachments(self, note_id: str) -> List[Attachment]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM attachments WHERE note_id = ? ORDER BY created_at, id",
                (note_id,),
            ).fetchall()
        return [self._row_to_attachment(row) for row in rows]

    def get_attachment(self, attachment_id: str) -> Optional[Attachment]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM attachments WHERE id = ?", (attachment_id,)
            ).fetchone()
        return self._row_to_attachment(row) if row else None

    # --- Row mapping -----------------------------------------------------

    def _row_to_note(self, conn: sqlite3.Connection, row: sqlite3.Row) -> Note:
        tag_rows = conn.execute(
            """
            SELECT tags.name FROM tags
            JOIN note_tags ON note_tags.tag_id = tags.id
            WHERE note_tags.note_id = ?
            ORDER BY tags.name
            """,
            (row["id"],),
        ).fetchall()
        return Note(
            id=row["id"],
            encrypted_data=bytes(row["encrypted_data"]),
            tags=tuple(r["name"] for r in tag_rows),
            attachment_count=row["attachment_count"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _row_to_tag(row: sqlite3.Row) -> Tag:
        return Tag(
            id=row["id"],
            name=row["name"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    @staticmethod
    def _row_to_attachment(row: sqlite3.Row) -> Attachment:
        return Attachment(
            id=row["id"],
            note_id=row["note_id"],
            content_type=row["content_type"],
            encrypted_data=bytes(row["encrypted_data"]),
            size=row["size"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )
