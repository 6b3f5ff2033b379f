"""Utility functions for VM-Backup-Runner."""

from __future__ import annotations

import os
import re
import shutil
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from vmbackup.constants import (
    _LOG_VERBOSE,
    BACKUP_TIMESTAMP_FORMAT,
    FALLBACK_VM_FILENAME,
    INVALID_FILENAME_CHARS,
)


def log(level: str, message: str) -> None:
    """Lightweight structured logging compatible with existing colour expectation."""
    if level == "DEBUG" and not _LOG_VERBOSE:
        return
    colours = {
        "INFO": "\033[0;34m",
        "WARN": "\033[1;33m",
        "ERROR": "\033[0;31m",
        "SUCCESS": "\033[0;32m",
        "DEBUG": "\033[0;90m",
    }
    colour = colours.get(level, "")
    reset = "\033[0m" if colour else ""
    print(f"{colour}[{level}]{reset} {message}", flush=True)


def get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(name, default)


def get_env_paths(name: str) -> Optional[List[Path]]:
    """Split an os.pathsep separated variable into paths; None when unset."""
    raw = os.environ.get(name)
    if raw is None:
        return None
    return [Path(item.strip()).expanduser() for item in raw.split(os.pathsep) if item.strip()]


def ensure_directory(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


def find_executable(name: str, candidates=()) -> Optional[Path]:
    """Return the first executable candidate, falling back to a PATH lookup."""
    for candidate in candidates:
        if is_executable(Path(candidate)):
            return Path(candidate)
    found = shutil.which(name)
    return Path(found) if found else None


def sanitize_filename_component(raw: str) -> str:
    """Replace characters that are illegal in file names and never return an empty name."""
    replaced = "".join("_" if ch in INVALID_FILENAME_CHARS else ch for ch in raw)
    value = replaced.strip()
    return value or FALLBACK_VM_FILENAME


def backup_timestamp(moment: datetime) -> str:
    """Run-wide timestamp used to name every archive of one run."""
    if moment.tzinfo is not None:
        moment = moment.astimezone()
    return moment.strftime(BACKUP_TIMESTAMP_FORMAT)


def natural_sort_key(value: str):
    """Sort key comparing digit runs numerically ("disk2" before "disk10")."""
    return [int(part) if part.isdigit() else part.lower() for part in re.split(r"(\d+)", value)]


def format_bytes(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    value = size / 1024
    for unit in ("KiB", "MiB"):
        if value < 1024:
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GiB"
