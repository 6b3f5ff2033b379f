"""Path-nesting checks and constrained cleanup of transient backup artifacts."""

from __future__ import annotations

import os
import shutil
import time
from pathlib import Path
from typing import Union

from vmbackup.constants import CLEANUP_RETRIES, CLEANUP_RETRY_DELAY
from vmbackup.exceptions import SafetyViolationError
from vmbackup.utils import log

PathLike = Union[str, Path]


def canonical_path(path: PathLike) -> Path:
    """Absolute, user-expanded, symlink-resolved and normalized form of ``path``."""
    return Path(os.path.realpath(os.path.expanduser(str(path))))


def is_same_or_descendant(candidate: PathLike, base: PathLike) -> bool:
    candidate_path = canonical_path(candidate)
    base_path = canonical_path(base)
    return candidate_path == base_path or base_path in candidate_path.parents


def validate_backup_paths(
    bundle: Path,
    destination: Path,
    working_root: Path,
    copied_bundle: Path,
) -> None:
    """Refuse any layout where a job could write into its own source bundle."""
    if not is_same_or_descendant(working_root, destination):
        raise SafetyViolationError(f"working directory {working_root} is outside {destination}.")
    if is_same_or_descendant(destination, bundle):
        raise SafetyViolationError(f"backup directory {destination} is inside VM bundle {bundle}.")
    if is_same_or_descendant(copied_bundle, bundle):
        raise SafetyViolationError(f"working copy {copied_bundle} is inside VM bundle {bundle}.")
    if is_same_or_descendant(bundle, destination):
        raise SafetyViolationError(f"VM bundle {bundle} is inside backup directory {destination}.")


def remove_with_retries(
    path: Path,
    parent: Path,
    retries: int = CLEANUP_RETRIES,
    delay: float = CLEANUP_RETRY_DELAY,
) -> bool:
    """Delete ``path`` (file or tree) if it lives under ``parent``.

    Removal is retried a bounded number of times because the archiver may still be
    releasing handles. Returns False when the path is outside ``parent`` or could not
    be removed.
    """
    if not is_same_or_descendant(path, parent):
        log("WARN", f"Refusing to remove {path}: not inside {parent}")
        return False

    attempts = 0
    while True:
        if not os.path.lexists(path):
            return True
        try:
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            else:
                path.unlink()
            return True
        except FileNotFoundError:
            return True
        except OSError as exc:
            attempts += 1
            if attempts > retries:
                log("WARN", f"Giving up removing {path} after {attempts} attempts: {exc}")
                return False
            time.sleep(delay)
