"""
Vault Logging
=============

Logging helpers that keep key material and note content out of log output.

Security Features:
- Redaction filter on every handler (passwords, tokens, keys, long blobs)
- Rotating log files with owner-only directories
- Optional JSON output for machine parsing
- Loggers never propagate to an unfiltered root logger
"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Final, Optional, Pattern

_CONSOLE_FORMAT: Final[str] = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_FILE_FORMAT: Final[str] = (
    "%(asctime)s | %(levelname)-8s | %(name)s | %(funcName)s:%(lineno)d | %(message)s"
)

# Patterns for material that must never reach a log sink
_REDACTION_PATTERNS: Final[list[tuple[str, Pattern[str]]]] = [
    ("passphrase", re.compile(r'(?i)(passphrase|password|passwd)\s*[=:]\s*["\']?[^\s"\']+["\']?')),
    ("token", re.compile(r'(?i)(token|bearer)\s*[=:]\s*["\']?[^\s"\']+["\']?')),
    ("key", re.compile(r'(?i)(private[_-]?key|content[_-]?key|secret)\s*[=:]\s*["\']?[^\s"\']+["\']?')),
    ("pem", re.compile(r"-----BEGIN [A-Z ]+-----[\s\S]*?-----END [A-Z ]+-----")),
    # Long base64 runs (wrapped keys, nonces in bulk, ciphertext)
    ("base64_blob", re.compile(r"[A-Za-z0-9+/]{40,}={0,2}")),
    # Long hex runs (raw key dumps)
    ("hex_blob", re.compile(r"(?i)(?:0x)?[a-f0-9]{32,}")),
]

_REDACTED: Final[str] = "[REDACTED]"


class SecureLogFilter(logging.Filter):
    """
    Redact sensitive values from log records.

    The record is always kept; only its message and string arguments
    are rewritten.
    """

    def __init__(self, name: str = "", extra_patterns: Optional[list[Pattern[str]]] = None) -> None:
        super().__init__(name)
        self._extra_patterns = extra_patterns or []

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self.redact(record.msg)

        if isinstance(record.args, dict):
            record.args = {
                k: self.redact(v) if isinstance(v, str) else v
                for k, v in record.args.items()
            }
        elif isinstance(record.args, tuple):
            record.args = tuple(
                self.redact(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )

        return True

    def redact(self, text: str) -> str:
        """Return text with every sensitive match replaced."""
        result = text
        for label, pattern in _REDACTION_PATTERNS:
            result = pattern.sub(f"{label}={_REDACTED}", result)
        for pattern in self._extra_patterns:
            result = pattern.sub(_REDACTED, result)
        return result


class StructuredLogFormatter(logging.Formatter):
    """Emit one JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class VaultRotatingFileHandler(RotatingFileHandler):
    """Rotating file handler whose directory is created owner-only."""

    def __init__(
        self,
        filename: str | Path,
        maxBytes: int = 10 * 1024 * 1024,
        backupCount: int = 5,
        encoding: str = "utf-8",
    ) -> None:
        log_path = Path(filename).resolve()
        log_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        super().__init__(
            str(log_path),
            mode="a",
            maxBytes=maxBytes,
            backupCount=backupCount,
            encoding=encoding,
        )


def get_vault_logger(
    name: str,
    log_dir: Optional[Path] = None,
    level: str = "INFO",
    enable_console: bool = True,
    enable_file: bool = True,
    enable_json: bool = False,
    max_file_size: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """
    Create (or return the already configured) redacting logger.

    Args:
        name: Logger name (typically __name__)
        log_dir: Directory for the log file; file output is skipped without one
        level: Logging level name
        enable_console: Log to stderr
        enable_file: Log to a rotating file in log_dir
        enable_json: Use JSON lines for the file handler
        max_file_size: Rotation threshold in bytes
        backup_count: Rotated files kept

    Returns:
        Configured logger
    """
    logger = logging.getLogger(name)

    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, level.upper()))
    redactor = SecureLogFilter()

    if enable_console:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(logging.Formatter(_CONSOLE_FORMAT, datefmt="%H:%M:%S"))
        console.addFilter(redactor)
        logger.addHandler(console)

    if enable_file and log_dir:
        file_handler = VaultRotatingFileHandler(
            log_dir / f"{name.replace('.', '_')}.log",
            maxBytes=max_file_size,
            backupCount=backup_count,
        )
        if enable_json:
            file_handler.setFormatter(StructuredLogFormatter())
        else:
            file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        file_handler.addFilter(redactor)
        logger.addHandler(file_handler)

    logger.propagate = False

    return logger
