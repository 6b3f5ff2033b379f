"""Chunked, cancellable directory copy with byte-level progress."""

from __future__ import annotations

import os
import stat
from pathlib import Path
from typing import Callable, List, Optional

from vmbackup.cancellation import CancellationToken
from vmbackup.constants import COPY_CHUNK_SIZE
from vmbackup.exceptions import BackupCancelled, CopyFailedError

ProgressCallback = Callable[[int], None]


def _is_hidden(name: str) -> bool:
    return name.startswith(".")


def _visible_dirs(root: str, dirnames: List[str]) -> List[str]:
    return [d for d in dirnames if not _is_hidden(d) and not os.path.islink(os.path.join(root, d))]


def _raise(exc: OSError) -> None:
    raise exc


def directory_byte_size(root: Path) -> int:
    """Total size of the visible regular files below ``root``."""
    total = 0
    for current, dirnames, filenames in os.walk(root):
        dirnames[:] = _visible_dirs(current, dirnames)
        for name in filenames:
            if _is_hidden(name):
                continue
            try:
                st = os.lstat(os.path.join(current, name))
            except OSError:
                continue
            if stat.S_ISREG(st.st_mode):
                total += st.st_size
    return total


def copy_file_streaming(
    source: Path,
    destination: Path,
    cancellation_token: CancellationToken,
    chunk_size: int = COPY_CHUNK_SIZE,
) -> int:
    """Copy one file in fixed-size chunks, checking for cancellation between chunks."""
    destination.parent.mkdir(parents=True, exist_ok=True)
    copied = 0
    with open(source, "rb") as src, open(destination, "wb") as dst:
        while True:
            if cancellation_token.is_cancelled():
                raise BackupCancelled()
            chunk = src.read(chunk_size)
            if not chunk:
                break
            dst.write(chunk)
            copied += len(chunk)
    return copied


def copy_tree(
    source: Path,
    destination: Path,
    cancellation_token: CancellationToken,
    progress: Optional[ProgressCallback] = None,
    total_bytes: Optional[int] = None,
    chunk_size: int = COPY_CHUNK_SIZE,
) -> int:
    """Recreate ``source`` under ``destination`` and return the number of bytes copied.

    Only directories and regular files are copied; hidden entries, symlinks and
    special files are skipped. Any unreadable entry aborts the whole copy.
    """
    if total_bytes is None:
        total_bytes = directory_byte_size(source)

    def report(value: int) -> None:
        if progress is not None:
            progress(min(value, total_bytes))

    copied = 0
    try:
        destination.mkdir(parents=True, exist_ok=True)
        report(0)
        for current, dirnames, filenames in os.walk(source, onerror=_raise):
            if cancellation_token.is_cancelled():
                raise BackupCancelled()
            rel = Path(current).relative_to(source)
            dirnames[:] = _visible_dirs(current, dirnames)
            for name in dirnames:
                (destination / rel / name).mkdir(parents=True, exist_ok=True)
            for name in sorted(filenames):
                if _is_hidden(name):
                    continue
                if cancellation_token.is_cancelled():
                    raise BackupCancelled()
                src_path = Path(current) / name
                if not stat.S_ISREG(os.lstat(src_path).st_mode):
                    continue
                copied += copy_file_streaming(src_path, destination / rel / name, cancellation_token, chunk_size)
                report(copied)
    except OSError as exc:
        raise CopyFailedError(str(exc)) from exc
    return copied
