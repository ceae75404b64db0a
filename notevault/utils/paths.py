"""
Path Utilities
==============

OS-aware helpers for the directories the vault writes into.
"""

from __future__ import annotations

import os
import platform
import uuid
from pathlib import Path


def ensure_private_dir(directory: Path) -> Path:
    """
    Create a directory readable only by its owner.

    Args:
        directory: Directory to create (parents included)

    Returns:
        The directory path
    """
    directory.mkdir(mode=0o700, parents=True, exist_ok=True)

    # On Windows, permissions work differently
    if platform.system().lower() != "windows":
        directory.chmod(0o700)

    return directory


def unique_export_path(directory: Path, suffix: str = ".zip") -> Path:
    """Fresh, unused archive path inside directory."""
    while True:
        candidate = directory / f"export_{uuid.uuid4()}{suffix}"
        if not candidate.exists():
            return candidate


def staging_path_for(final_path: Path) -> Path:
    """Hidden sibling used while an archive is being written."""
    return final_path.with_name(f".{final_path.name}.{os.getpid()}.partial")
