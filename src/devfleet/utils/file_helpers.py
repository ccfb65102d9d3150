"""Shared file utilities for devfleet.

Provides common utilities used by config, the registry and the supervisor:
- get_app_dir: OS-appropriate application directory (overridable)
- set_secure_permissions: Owner-only file/directory permissions
- atomic_write_json: Write-to-temp then rename, so readers never see a torn file
"""

from __future__ import annotations

__all__ = [
    "atomic_write_json",
    "get_app_dir",
    "set_secure_permissions",
]

import json
import os
import sys
import tempfile
from pathlib import Path
from typing import Any

import click

from devfleet.constants import APP_NAME, HOME_ENV_VAR


def get_app_dir() -> Path:
    """Get the application directory.

    DEVFLEET_HOME wins when set. Otherwise uses click.get_app_dir() which returns:
    - macOS: ~/Library/Application Support/devfleet
    - Linux: ~/.config/devfleet (XDG compliant)
    - Windows: C:\\Users\\<user>\\AppData\\Roaming\\devfleet

    Returns:
        Path to the application directory.
    """
    override = os.environ.get(HOME_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return Path(click.get_app_dir(APP_NAME))


def set_secure_permissions(path: Path, *, is_directory: bool = False) -> None:
    """Restrict path to its owner: 0o700 for directories, 0o600 for files.

    Config and registry files carry env values that may be
    secrets. No-op on Windows; chmod failures are ignored.
    """
    if sys.platform == "win32":
        return
    try:
        path.chmod(0o700 if is_directory else 0o600)
    except OSError:
        pass  # e.g. filesystems without POSIX modes


def atomic_write_json(path: Path, data: Any, *, secure: bool = False) -> None:
    """Write JSON to path atomically.

    The document is written to a temp file in the same directory and then
    renamed over the target, so a crash mid-write leaves the old file intact.

    Args:
        path: Destination file.
        data: JSON-serializable document.
        secure: If True, restrict the file (and a newly created parent) to the owner.

    Raises:
        OSError: If the directory cannot be created or the file cannot be written.
    """
    created_parent = not path.parent.exists()
    path.parent.mkdir(parents=True, exist_ok=True)
    if secure and created_parent:
        set_secure_permissions(path.parent, is_directory=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
        if secure:
            set_secure_permissions(tmp_path)
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise

