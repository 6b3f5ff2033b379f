"""Zip archive creation through an external tool with estimated progress."""

from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from vmbackup.cancellation import CancellationToken
from vmbackup.constants import (
    ARCHIVE_POLL_INTERVAL,
    ARCHIVE_PROGRESS_END,
    ARCHIVE_PROGRESS_START,
    ARCHIVE_PROGRESS_STEP,
    DITTO_PATH,
)
from vmbackup.exceptions import ArchiveFailedError, BackupCancelled, ManagerError, ProcessCancelled
from vmbackup.process import ProcessRunner
from vmbackup.utils import log

FLAVORS = {"ditto", "zip"}


def estimate_archive_progress(archive_bytes: int, total_bytes: int, last: float) -> float:
    """Map archive size onto the archiving progress range without ever going backward.

    Compression makes the ratio a rough estimate, so whenever it stalls or shrinks
    the value creeps forward by a small step and stays capped below the end of the
    range; 100% is only reported after the tool exits successfully.
    """
    ratio = min(1.0, archive_bytes / total_bytes) if total_bytes > 0 else 0.0
    mapped = ARCHIVE_PROGRESS_START + ratio * (ARCHIVE_PROGRESS_END - ARCHIVE_PROGRESS_START)
    if mapped <= last:
        mapped = min(ARCHIVE_PROGRESS_END, last + ARCHIVE_PROGRESS_STEP)
    return min(ARCHIVE_PROGRESS_END, mapped)


def _file_size(path: Path) -> int:
    try:
        return os.stat(path).st_size
    except OSError:
        return 0


class Archiver:
    def __init__(
        self,
        runner: Optional[ProcessRunner] = None,
        executable: Path = DITTO_PATH,
        flavor: str = "ditto",
        poll_interval: float = ARCHIVE_POLL_INTERVAL,
    ) -> None:
        if flavor not in FLAVORS:
            raise ManagerError(f"Unsupported archiver '{flavor}'. Supported: {', '.join(sorted(FLAVORS))}")
        self.runner = runner or ProcessRunner()
        self.executable = executable
        self.flavor = flavor
        self.poll_interval = poll_interval

    def build_command(self, source_dir: Path, archive_path: Path) -> Tuple[List[str], Optional[Path]]:
        """Arguments and working directory that zip ``source_dir`` with one parent entry."""
        if self.flavor == "ditto":
            args = ["-c", "-k", "--sequesterRsrc", "--keepParent", str(source_dir), str(archive_path)]
            return args, None
        return ["-r", "-q", str(archive_path), source_dir.name], source_dir.parent

    def create(
        self,
        source_dir: Path,
        archive_path: Path,
        total_bytes: int,
        cancellation_token: CancellationToken,
        progress: Optional[Callable[[float], None]] = None,
    ) -> Path:
        args, cwd = self.build_command(source_dir, archive_path)

        def report(value: float) -> None:
            if progress is not None:
                progress(value)

        report(ARCHIVE_PROGRESS_START)
        stop = threading.Event()
        poller = threading.Thread(
            target=self._poll,
            args=(archive_path, total_bytes, stop, report),
            daemon=True,
        )
        poller.start()
        try:
            result = self.runner.run(self.executable, args, cancellation_token=cancellation_token, cwd=cwd)
        except ProcessCancelled as exc:
            raise BackupCancelled() from exc
        finally:
            stop.set()
            poller.join()

        if result.code != 0:
            raise ArchiveFailedError(result.code, result.stderr.strip())
        log("DEBUG", f"Archive written: {archive_path}")
        return archive_path

    def _poll(
        self,
        archive_path: Path,
        total_bytes: int,
        stop: threading.Event,
        report: Callable[[float], None],
    ) -> None:
        last = ARCHIVE_PROGRESS_START
        while not stop.is_set():
            last = estimate_archive_progress(_file_size(archive_path), total_bytes, last)
            report(last)
            stop.wait(self.poll_interval)
