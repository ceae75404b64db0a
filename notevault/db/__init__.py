"""
Database module - SQLite persistence for notes, tags and attachments.
"""

from notevault.db.vault_db import VaultDatabase

__all__ = ["VaultDatabase"]
