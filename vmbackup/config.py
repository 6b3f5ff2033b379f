"""Settings loading, environment overrides and persistence for VM-Backup-Runner."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from vmbackup.constants import (
    ARCHIVER_CHOICES,
    DEFAULT_BACKUP_DIR,
    DEFAULT_CONFIG_PATH,
    DEFAULT_SEARCH_DIR,
    UTMCTL_BUNDLED_PATH,
)
from vmbackup.exceptions import ManagerError
from vmbackup.models import Settings
from vmbackup.utils import ensure_directory, get_env, get_env_paths, log, natural_sort_key


def default_settings() -> Settings:
    return Settings(
        vm_search_directories=[DEFAULT_SEARCH_DIR],
        backup_directory=DEFAULT_BACKUP_DIR,
        utmctl_path=UTMCTL_BUNDLED_PATH,
        archiver="auto",
    )


def _normalize_dir(path: Path) -> Path:
    return Path(os.path.realpath(os.path.expanduser(str(path))))


def _validate_archiver(raw: Any, source: str) -> str:
    value = str(raw).strip().lower()
    if value not in ARCHIVER_CHOICES:
        raise ManagerError(
            f"Invalid archiver '{raw}' in {source}. Supported: {', '.join(sorted(ARCHIVER_CHOICES))}"
        )
    return value


def _settings_from_mapping(data: Dict[str, Any], source: str) -> Settings:
    settings = default_settings()

    dirs = data.get("vm_search_directories")
    if dirs is not None:
        if not isinstance(dirs, list) or not all(isinstance(item, str) for item in dirs):
            raise ManagerError(f"'vm_search_directories' in {source} must be a list of paths")
        settings.vm_search_directories = [Path(item).expanduser() for item in dirs if item.strip()]

    backup_dir = data.get("backup_directory")
    if backup_dir is not None:
        if not isinstance(backup_dir, str) or not backup_dir.strip():
            raise ManagerError(f"'backup_directory' in {source} must be a non-empty path")
        settings.backup_directory = Path(backup_dir.strip()).expanduser()

    utmctl = data.get("utmctl_path")
    if utmctl is not None:
        if not isinstance(utmctl, str) or not utmctl.strip():
            raise ManagerError(f"'utmctl_path' in {source} must be a non-empty path")
        settings.utmctl_path = Path(utmctl.strip()).expanduser()

    archiver = data.get("archiver")
    if archiver is not None:
        settings.archiver = _validate_archiver(archiver, source)

    return settings


def load_settings(config_path: Optional[Path] = None) -> Settings:
    """Read the YAML settings file; a missing file yields the defaults."""
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH
    if not config_path.exists():
        return default_settings()
    try:
        data = yaml.safe_load(config_path.read_text()) or {}
    except yaml.YAMLError as exc:
        raise ManagerError(f"Cannot parse settings file {config_path}: {exc}") from exc
    except OSError as exc:
        raise ManagerError(f"Cannot read settings file {config_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ManagerError(f"Settings file {config_path} must contain a mapping")
    return _settings_from_mapping(data, str(config_path))


def apply_env_overrides(settings: Settings) -> Settings:
    search_dirs = get_env_paths("VM_SEARCH_DIRS")
    if search_dirs is not None:
        settings.vm_search_directories = search_dirs

    backup_dir = (get_env("BACKUP_DIR") or "").strip()
    if backup_dir:
        settings.backup_directory = Path(backup_dir).expanduser()

    utmctl = (get_env("UTMCTL_PATH") or "").strip()
    if utmctl:
        settings.utmctl_path = Path(utmctl).expanduser()

    archiver = get_env("ARCHIVER")
    if archiver is not None and archiver.strip():
        settings.archiver = _validate_archiver(archiver, "ARCHIVER")
    return settings


def parse_env(config_path: Optional[Path] = None) -> Settings:
    """Settings file overlaid by environment variables."""
    return apply_env_overrides(load_settings(config_path))


def save_settings(settings: Settings, config_path: Optional[Path] = None) -> Path:
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH
    payload = {
        "vm_search_directories": [str(path) for path in settings.vm_search_directories],
        "backup_directory": str(settings.backup_directory),
        "utmctl_path": str(settings.utmctl_path),
        "archiver": settings.archiver,
    }
    try:
        ensure_directory(config_path.parent)
        config_path.write_text(yaml.safe_dump(payload, sort_keys=False))
    except OSError as exc:
        raise ManagerError(f"Cannot write settings file {config_path}: {exc}") from exc
    log("DEBUG", f"Settings saved to {config_path}")
    return config_path


def resolve_backup_directory(settings: Settings) -> Path:
    """Absolute, symlink-resolved backup directory."""
    raw = str(settings.backup_directory).strip()
    if not raw:
        raise ManagerError("Backup directory is not configured. Set it with 'config set-backup-dir'.")
    return _normalize_dir(Path(raw))


class SettingsStore:
    """Settings mutations that persist immediately to the YAML file."""

    def __init__(self, config_path: Optional[Path] = None) -> None:
        self.config_path = config_path or DEFAULT_CONFIG_PATH
        self.settings = load_settings(self.config_path)

    def _persist(self) -> Settings:
        save_settings(self.settings, self.config_path)
        return self.settings

    def add_search_directory(self, path: Path) -> List[Path]:
        normalized = _normalize_dir(path)
        existing = {_normalize_dir(p) for p in self.settings.vm_search_directories}
        if normalized not in existing:
            self.settings.vm_search_directories.append(normalized)
            self.settings.vm_search_directories.sort(key=lambda p: natural_sort_key(str(p)))
        self._persist()
        return list(self.settings.vm_search_directories)

    def remove_search_directory(self, path: Path) -> List[Path]:
        target = _normalize_dir(path)
        remaining = [p for p in self.settings.vm_search_directories if _normalize_dir(p) != target]
        if len(remaining) == len(self.settings.vm_search_directories):
            raise ManagerError(f"{path} is not a configured search directory")
        self.settings.vm_search_directories = remaining
        self._persist()
        return list(remaining)

    def clear_search_directories(self) -> List[Path]:
        self.settings.vm_search_directories = []
        self._persist()
        return []

    def set_backup_directory(self, path: Path) -> Path:
        raw = str(path).strip()
        if not raw:
            raise ManagerError("Backup directory must not be empty")
        self.settings.backup_directory = _normalize_dir(Path(raw))
        self._persist()
        return self.settings.backup_directory

    def set_utmctl_path(self, path: Optional[Path]) -> Path:
        self.settings.utmctl_path = Path(path).expanduser() if path else UTMCTL_BUNDLED_PATH
        self._persist()
        return self.settings.utmctl_path

    def set_archiver(self, archiver: str) -> str:
        self.settings.archiver = _validate_archiver(archiver, "command line")
        self._persist()
        return self.settings.archiver

    def reset(self) -> Settings:
        self.settings = default_settings()
        return self._persist()
