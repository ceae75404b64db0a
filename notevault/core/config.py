"""
Vault Configuration
===================

Immutable, environment-aware configuration for the note vault.

Security Features:
- Frozen configuration sections validated on construction
- Environment overrides (prefix NOTEVAULT_) that never read secrets
- OS-aware default paths
- Owner-only permissions on created directories
"""

from __future__ import annotations

import os
import platform
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Final, Optional

_SENSITIVE_KEYS: Final[frozenset[str]] = frozenset({
    "password", "passphrase", "secret", "token", "private", "credential",
})

MIN_RSA_KEY_SIZE: Final[int] = 2048


def _is_sensitive_key(key: str) -> bool:
    key_lower = key.lower()
    return any(word in key_lower for word in _SENSITIVE_KEYS)


def _get_default_data_dir() -> Path:
    """OS-appropriate data directory."""
    system = platform.system().lower()

    if system == "windows":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
    elif system == "darwin":
        base = Path.home() / "Library" / "Application Support"
    else:
        base = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))

    return base / "NoteVault"


def _get_default_log_dir() -> Path:
    """OS-appropriate log directory."""
    system = platform.system().lower()

    if system == "windows":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
        return base / "NoteVault" / "Logs"
    elif system == "darwin":
        return Path.home() / "Library" / "Logs" / "NoteVault"
    else:
        return Path(os.environ.get("XDG_STATE_HOME", Path.home() / ".local" / "state")) / "NoteVault" / "logs"


@dataclass(frozen=True, slots=True)
class PathConfig:
    """Where the vault keeps its database, exports and logs."""

    data_dir: Path = field(default_factory=_get_default_data_dir)
    log_dir: Path = field(default_factory=_get_default_log_dir)
    export_dir: Optional[Path] = None

    def __post_init__(self) -> None:
        for field_name in ("data_dir", "log_dir", "export_dir"):
            path = getattr(self, field_name)
            if path is not None and not path.is_absolute():
                raise ValueError(f"{field_name} must be an absolute path: {path}")

    @property
    def database_path(self) -> Path:
        return self.data_dir / "vault.db"

    @property
    def key_store_path(self) -> Path:
        return self.data_dir / "keys.db"

    @property
    def exports_path(self) -> Path:
        return self.export_dir or self.data_dir / "Exports"


@dataclass(frozen=True, slots=True)
class CryptoConfig:
    """Key sizes and key-store KDF cost."""

    rsa_key_size: int = MIN_RSA_KEY_SIZE
    argon2_time_cost: int = 3
    argon2_memory_cost: int = 65536  # KiB
    argon2_parallelism: int = 4

    def __post_init__(self) -> None:
        if self.rsa_key_size < MIN_RSA_KEY_SIZE:
            raise ValueError(f"RSA key size must be at least {MIN_RSA_KEY_SIZE} bits")
        if self.argon2_time_cost < 1:
            raise ValueError("Argon2 time cost must be at least 1")
        if self.argon2_memory_cost < 8 * self.argon2_parallelism:
            raise ValueError("Argon2 memory cost must be at least 8 KiB per lane")


@dataclass(frozen=True, slots=True)
class ExportConfig:
    """Background export settings."""

    max_workers: int = 2

    def __post_init__(self) -> None:
        if self.max_workers < 1:
            raise ValueError("Export worker count must be at least 1")


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Log level and sinks."""

    level: str = "INFO"
    enable_console: bool = True
    enable_file: bool = True
    enable_json: bool = False

    def __post_init__(self) -> None:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if self.level.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {self.level}")


class VaultConfig:
    """
    Immutable vault configuration with environment overrides.

    Usage:
        config = VaultConfig.load()
        db_path = config.paths.database_path
        bits = config.crypto.rsa_key_size

    Environment overrides use the NOTEVAULT_ prefix and double
    underscores for nesting:
        NOTEVAULT_PATHS__DATA_DIR=/srv/notevault
        NOTEVAULT_CRYPTO__RSA_KEY_SIZE=3072
        NOTEVAULT_LOGGING__LEVEL=DEBUG
    """

    __slots__ = ("_paths", "_crypto", "_export", "_logging", "_frozen")

    def __init__(
        self,
        paths: Optional[PathConfig] = None,
        crypto: Optional[CryptoConfig] = None,
        export: Optional[ExportConfig] = None,
        logging: Optional[LoggingConfig] = None,
    ) -> None:
        object.__setattr__(self, "_frozen", False)
        object.__setattr__(self, "_paths", paths or PathConfig())
        object.__setattr__(self, "_crypto", crypto or CryptoConfig())
        object.__setattr__(self, "_export", export or ExportConfig())
        object.__setattr__(self, "_logging", logging or LoggingConfig())
        object.__setattr__(self, "_frozen", True)

    @property
    def paths(self) -> PathConfig:
        return self._paths

    @property
    def crypto(self) -> CryptoConfig:
        return self._crypto

    @property
    def export(self) -> ExportConfig:
        return self._export

    @property
    def logging(self) -> LoggingConfig:
        return self._logging

    @classmethod
    def load(cls, env_prefix: str = "NOTEVAULT") -> VaultConfig:
        """
        Build configuration from defaults plus environment overrides.

        Args:
            env_prefix: Prefix of the environment variables to read

        Returns:
            Configured VaultConfig
        """
        overrides = cls._parse_env_overrides(env_prefix)

        paths_kwargs: dict[str, Any] = {}
        for name in ("data_dir", "log_dir", "export_dir"):
            if f"paths.{name}" in overrides:
                paths_kwargs[name] = Path(overrides[f"paths.{name}"])

        crypto_kwargs: dict[str, Any] = {}
        for name in ("rsa_key_size", "argon2_time_cost", "argon2_memory_cost", "argon2_parallelism"):
            if f"crypto.{name}" in overrides:
                crypto_kwargs[name] = int(overrides[f"crypto.{name}"])

        export_kwargs: dict[str, Any] = {}
        if "export.max_workers" in overrides:
            export_kwargs["max_workers"] = int(overrides["export.max_workers"])

        logging_kwargs: dict[str, Any] = {}
        if "logging.level" in overrides:
            logging_kwargs["level"] = overrides["logging.level"]
        for name in ("enable_console", "enable_file", "enable_json"):
            if f"logging.{name}" in overrides:
                logging_kwargs[name] = overrides[f"logging.{name}"].lower() == "true"

        return cls(
            paths=PathConfig(**paths_kwargs) if paths_kwargs else None,
            crypto=CryptoConfig(**crypto_kwargs) if crypto_kwargs else None,
            export=ExportConfig(**export_kwargs) if export_kwargs else None,
            logging=LoggingConfig(**logging_kwargs) if logging_kwargs else None,
        )

    @staticmethod
    def _parse_env_overrides(prefix: str) -> dict[str, str]:
        overrides: dict[str, str] = {}
        prefix_upper = f"{prefix.upper()}_"

        for key, value in os.environ.items():
            if not key.startswith(prefix_upper):
                continue
            # NOTEVAULT_SECTION__KEY -> section.key
            config_key = key[len(prefix_upper):].lower().replace("__", ".")

            # Secrets are never taken from the environment
            if _is_sensitive_key(config_key):
                continue

            overrides[config_key] = value

        return overrides

    def ensure_directories(self) -> None:
        """Create data, log and export directories, owner-only on POSIX."""
        for directory in (self._paths.data_dir, self._paths.log_dir, self._paths.exports_path):
            directory.mkdir(parents=True, exist_ok=True)
            if platform.system().lower() != "windows":
                directory.chmod(stat.S_IRWXU)

    def __repr__(self) -> str:
        return f"VaultConfig(data_dir={self._paths.data_dir}, rsa={self._crypto.rsa_key_size})"

    def __setattr__(self, name: str, value: Any) -> None:
        if getattr(self, "_frozen", False):
            raise AttributeError("VaultConfig is immutable after initialization")
        super().__setattr__(name, value)
