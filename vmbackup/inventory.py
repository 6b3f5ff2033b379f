"""Reconcile utmctl's runtime VM list with bundles found on disk."""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Set

from vmbackup.constants import PERMISSION_DENIED_MARKER
from vmbackup.exceptions import ManagerError, UTMCtlError
from vmbackup.models import (
    ControlOutcome,
    DiscoveredBundle,
    PathDiagnostics,
    PathResolution,
    PathResolutionStatus,
    RuntimeInventory,
    RuntimeVM,
    VirtualMachine,
    VMRuntimeInfo,
)
from vmbackup.utmctl import StopMethod, UTMCtl
from vmbackup.utils import log

AMBIGUOUS_REASON = "Multiple bundle candidates match this runtime VM. Narrow search directories or rename clones."
UNRESOLVED_REASON = "Bundle path for this runtime VM could not be resolved from configured search directories."
UTMCTL_UNAVAILABLE = "utmctl is required for runtime control. Configure a valid utmctl binary (config set-utmctl)."


def canonical_name(raw: str) -> str:
    return raw.strip().lower()


def canonical_identifier(raw: str) -> str:
    return raw.strip().strip("{}").lower()


def _index(keys: Sequence[str]) -> Dict[str, List[int]]:
    table: Dict[str, List[int]] = {}
    for idx, key in enumerate(keys):
        table.setdefault(key, []).append(idx)
    return table


def build_inventory(remote: Sequence[RuntimeVM], discovered: Sequence[DiscoveredBundle]) -> RuntimeInventory:
    """Match every runtime VM to at most one unused bundle.

    Preference order: UUID and name, UUID alone, then a name that matches exactly
    one remaining bundle. Anything else is reported as ambiguous or unresolved.
    """
    by_uuid = _index([canonical_identifier(b.uuid) for b in discovered])
    by_name = _index([canonical_name(b.name) for b in discovered])
    used: Set[int] = set()

    vms: List[VirtualMachine] = []
    runtime_info: Dict[str, VMRuntimeInfo] = {}
    unresolved = 0
    ambiguous = 0

    for entry in remote:
        uuid_key = canonical_identifier(entry.uuid)
        name_key = canonical_name(entry.name)
        uuid_candidates = [i for i in by_uuid.get(uuid_key, []) if i not in used] if uuid_key else []
        name_candidates = [i for i in by_name.get(name_key, []) if i not in used]
        exact = [i for i in uuid_candidates if canonical_name(discovered[i].name) == name_key]

        matched: Optional[int] = None
        if exact:
            matched = exact[0]
        elif uuid_candidates:
            matched = uuid_candidates[0]
        elif len(name_candidates) == 1:
            matched = name_candidates[0]

        if matched is not None:
            used.add(matched)
            resolution = PathResolution()
        elif len(uuid_candidates) > 1 or len(name_candidates) > 1:
            ambiguous += 1
            resolution = PathResolution(PathResolutionStatus.AMBIGUOUS, AMBIGUOUS_REASON)
        else:
            unresolved += 1
            resolution = PathResolution(PathResolutionStatus.UNRESOLVED, UNRESOLVED_REASON)

        bundle = discovered[matched] if matched is not None else None
        vm = VirtualMachine(
            id=uuid_key or name_key,
            name=entry.name,
            bundle_path=bundle.bundle_path if bundle else None,
            disk_paths=list(bundle.disk_paths) if bundle else [],
            control_identifier=entry.uuid,
            path_resolution=resolution,
        )
        vms.append(vm)
        runtime_info[vm.id] = VMRuntimeInfo(
            status=entry.status,
            control_identifier=entry.uuid,
            detail=resolution.blocked_reason,
        )

    return RuntimeInventory(
        vms=vms,
        runtime_info=runtime_info,
        diagnostics=PathDiagnostics(unresolved_count=unresolved, ambiguous_count=ambiguous),
    )


def map_inventory_error(exc: Exception) -> ManagerError:
    message = str(exc)
    if isinstance(exc, UTMCtlError) and PERMISSION_DENIED_MARKER in message:
        return ManagerError(
            "utmctl access is blocked by Apple Events permissions. Grant Automation permission and refresh.\n"
            + message
        )
    if isinstance(exc, ManagerError):
        return exc
    return ManagerError(message)


def load_runtime_inventory(utmctl: Optional[UTMCtl], discovered: Sequence[DiscoveredBundle]) -> RuntimeInventory:
    if utmctl is None:
        raise ManagerError(UTMCTL_UNAVAILABLE)
    try:
        remote = utmctl.list_virtual_machines()
    except ManagerError as exc:
        raise map_inventory_error(exc) from exc
    inventory = build_inventory(remote, discovered)
    diag = inventory.diagnostics
    if diag.unresolved_count or diag.ambiguous_count:
        log("WARN", f"Bundle paths: {diag.unresolved_count} unresolved, {diag.ambiguous_count} ambiguous")
    return inventory


def control(
    targets: Sequence[VirtualMachine],
    runtime_info: Dict[str, VMRuntimeInfo],
    action: str,
    utmctl: UTMCtl,
    method: StopMethod = StopMethod.REQUEST,
) -> ControlOutcome:
    """Run ``start``, ``suspend`` or ``stop`` for every target that has a control identifier."""
    if action not in ("start", "suspend", "stop"):
        raise ManagerError(f"Unknown control action '{action}'")

    controllable = []
    for vm in targets:
        info = runtime_info.get(vm.id)
        identifier = vm.control_identifier or (info.control_identifier if info else None)
        if identifier:
            controllable.append((vm, identifier))

    for vm, identifier in controllable:
        label = f"stop ({method.label.lower()})" if action == "stop" else action
        log("INFO", f"utmctl {label}: {vm.name}")
        if action == "start":
            utmctl.start(identifier)
        elif action == "suspend":
            utmctl.suspend(identifier)
        else:
            utmctl.stop(identifier, method)

    return ControlOutcome(
        controlled=[vm for vm, _ in controllable],
        skipped_count=len(targets) - len(controllable),
    )
