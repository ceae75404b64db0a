"""
Core module - Contains configuration, logging, errors and the vault services.
"""

from notevault.core.config import VaultConfig
from notevault.core.errors import ErrorReporter, NoteVaultError
from notevault.core.logging import SecureLogFilter, get_vault_logger

__all__ = ["VaultConfig", "ErrorReporter", "NoteVaultError", "SecureLogFilter", "get_vault_logger"]
