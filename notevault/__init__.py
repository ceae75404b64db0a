"""
NoteVault - Encrypted Personal Notes
====================================

Encrypted note storage with recipient-encrypted export archives.

Security Notice:
- Note content and attachments are only stored as AES-256-GCM ciphertext
- Exports use a fresh key per archive, wrapped with RSA-OAEP-SHA256
- No secrets are logged
- Fail-closed: every cryptographic failure raises
"""

from notevault.core.config import VaultConfig
from notevault.core.logging import get_vault_logger
from notevault.vault import Vault, build_vault

__version__ = "0.1.0"

__all__ = ["VaultConfig", "Vault", "build_vault", "get_vault_logger", "__version__"]
