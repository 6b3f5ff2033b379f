"""UTM bundle discovery by directory scan."""

from __future__ import annotations

import os
import plistlib
from pathlib import Path
from typing import Dict, Iterable, List, Tuple
from xml.parsers.expat import ExpatError

from vmbackup.constants import BUNDLE_CONFIG_NAME, BUNDLE_SUFFIX, DISK_SUFFIX
from vmbackup.models import DiscoveredBundle, VirtualMachine
from vmbackup.utils import log, natural_sort_key


def read_bundle_identity(bundle: Path) -> Tuple[str, str]:
    """Return (uuid, name) from the bundle's config.plist, defaulting to the bundle stem."""
    fallback_name = bundle.name[: -len(BUNDLE_SUFFIX)] if bundle.name.lower().endswith(BUNDLE_SUFFIX) else bundle.name
    try:
        with open(bundle / BUNDLE_CONFIG_NAME, "rb") as fh:
            data = plistlib.load(fh)
    except (OSError, ExpatError, ValueError) as exc:
        log("DEBUG", f"No readable {BUNDLE_CONFIG_NAME} in {bundle}: {exc}")
        return "", fallback_name
    if not isinstance(data, dict):
        return "", fallback_name

    info = data.get("Information")
    if not isinstance(info, dict):
        info = {}
    uuid = info.get("UUID") or data.get("UUID") or ""
    name = info.get("Name") or data.get("Name") or fallback_name
    return str(uuid), str(name)


def discover_disks(bundle: Path) -> List[Path]:
    data_dir = bundle / "Data"
    if not data_dir.is_dir():
        return []
    disks = [
        entry
        for entry in data_dir.iterdir()
        if not entry.name.startswith(".") and entry.suffix.lower() == DISK_SUFFIX and entry.is_file()
    ]
    return sorted(disks, key=lambda p: natural_sort_key(p.name))


def discover_bundles(base_directories: Iterable[Path]) -> List[DiscoveredBundle]:
    """Scan each base directory (one level deep) for ``*.utm`` bundles."""
    found: Dict[str, Path] = {}
    for base in base_directories:
        base = Path(base).expanduser()
        if not base.is_dir():
            log("DEBUG", f"Skipping missing search directory {base}")
            continue
        try:
            entries = list(base.iterdir())
        except OSError as exc:
            log("WARN", f"Cannot read search directory {base}: {exc}")
            continue
        for entry in entries:
            if entry.name.startswith(".") or not entry.name.lower().endswith(BUNDLE_SUFFIX):
                continue
            if entry.is_dir():
                found[os.path.normpath(str(entry.absolute()))] = entry

    ordered = sorted(found.values(), key=lambda p: (natural_sort_key(p.name), natural_sort_key(str(p))))
    bundles = []
    for bundle in ordered:
        uuid, name = read_bundle_identity(bundle)
        bundles.append(DiscoveredBundle(uuid=uuid, name=name, bundle_path=bundle, disk_paths=discover_disks(bundle)))
    return bundles


def bundles_to_vms(bundles: Iterable[DiscoveredBundle]) -> List[VirtualMachine]:
    """Filesystem-only inventory: every discovered bundle is a resolved VM."""
    return [
        VirtualMachine(
            id=str(bundle.bundle_path),
            name=bundle.name,
            bundle_path=bundle.bundle_path,
            disk_paths=list(bundle.disk_paths),
            control_identifier=bundle.uuid or None,
        )
        for bundle in bundles
    ]
