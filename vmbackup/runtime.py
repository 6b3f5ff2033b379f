"""Host tool detection for VM-Backup-Runner."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from vmbackup.constants import DITTO_PATH, QEMU_IMG_CANDIDATES
from vmbackup.exceptions import ManagerError
from vmbackup.models import Settings
from vmbackup.utils import find_executable, is_executable, log


@dataclass
class RuntimeInfo:
    archiver: Optional[Path]
    archiver_flavor: Optional[str]  # "ditto", "zip"
    qemu_img: Optional[Path]
    utmctl: Optional[Path]


def _detect_archiver(preference: str) -> Tuple[Optional[Path], Optional[str]]:
    """Prefer ditto (keeps macOS resource forks) and fall back to Info-ZIP."""
    if preference in ("auto", "ditto") and is_executable(DITTO_PATH):
        return DITTO_PATH, "ditto"
    if preference == "ditto":
        found = find_executable("ditto")
        return (found, "ditto") if found else (None, None)
    found = find_executable("zip")
    return (found, "zip") if found else (None, None)


def _detect_qemu_img() -> Optional[Path]:
    return find_executable("qemu-img", QEMU_IMG_CANDIDATES)


def _detect_utmctl(configured: Path) -> Optional[Path]:
    return configured if is_executable(configured) else None


def detect_runtime(settings: Settings) -> RuntimeInfo:
    """Locate the external tools the configured settings ask for."""
    archiver, flavor = _detect_archiver(settings.archiver)
    qemu_img = _detect_qemu_img()
    utmctl = _detect_utmctl(settings.utmctl_path)

    if archiver is None:
        log("DEBUG", f"No archiver found for preference '{settings.archiver}'")
    if qemu_img is None:
        log("DEBUG", "qemu-img not found (tried Homebrew paths and PATH)")
    if utmctl is None:
        log("DEBUG", f"utmctl not executable at {settings.utmctl_path}")

    return RuntimeInfo(archiver=archiver, archiver_flavor=flavor, qemu_img=qemu_img, utmctl=utmctl)


def require_tool(path: Optional[Path], name: str, hint: str) -> Path:
    if path is None:
        raise ManagerError(f"{name} not found.\n  {hint}")
    return path
