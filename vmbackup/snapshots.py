"""qemu-img snapshot listing, creation and deletion across a VM's disks."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from vmbackup.constants import SNAPSHOT_DATE_RE
from vmbackup.exceptions import ManagerError, QemuImgError
from vmbackup.models import ProcessResult, SnapshotEntry, SnapshotTagStatus, VirtualMachine
from vmbackup.process import ProcessRunner
from vmbackup.utils import log


def parse_snapshot_list(text: str) -> List[SnapshotEntry]:
    """Parse ``qemu-img snapshot -l`` output.

    Expected layout::

        Snapshot list:
        ID        TAG               VM_SIZE                DATE        VM_CLOCK     ICOUNT
        1         nightly               0 B 2026-02-10 18:38:21  0000:00:00.000          0

    VM_SIZE spans one or more tokens, so everything between TAG and the first
    ``YYYY-MM-DD`` token is treated as the size.
    """
    lines = text.splitlines()
    header = next((i for i, line in enumerate(lines) if line.strip().startswith("ID")), None)
    if header is None:
        return []

    entries: List[SnapshotEntry] = []
    for line in lines[header + 1 :]:
        parts = line.split()
        if len(parts) < 7:
            continue
        date_idx = next((i for i, part in enumerate(parts) if SNAPSHOT_DATE_RE.match(part)), None)
        if date_idx is None or date_idx + 2 >= len(parts):
            continue
        entries.append(
            SnapshotEntry(
                numeric_id=parts[0],
                tag=parts[1],
                vm_size=" ".join(parts[2:date_idx]),
                date=f"{parts[date_idx]} {parts[date_idx + 1]}",
                vm_clock=parts[date_idx + 2],
                icount=parts[date_idx + 3] if date_idx + 3 < len(parts) else "",
            )
        )
    return entries


class QemuImg:
    def __init__(self, executable: Path, runner: Optional[ProcessRunner] = None) -> None:
        self.executable = executable
        self.runner = runner or ProcessRunner()

    def _run_checked(self, args: List[str]) -> ProcessResult:
        result = self.runner.run(self.executable, args)
        if result.code != 0:
            raise QemuImgError(result.code, result.stdout, result.stderr)
        return result

    def snapshot_list(self, disk: Path) -> str:
        # qemu-img exits 0 for an empty list as well.
        return self._run_checked(["snapshot", "-l", str(disk)]).stdout

    def snapshot_create(self, tag: str, disk: Path) -> None:
        self._run_checked(["snapshot", "-c", tag, str(disk)])

    def snapshot_delete(self, tag: str, disk: Path) -> None:
        self._run_checked(["snapshot", "-d", tag, str(disk)])


def _sorted_statuses(counts: Dict[str, List[int]]) -> List[SnapshotTagStatus]:
    statuses = [SnapshotTagStatus(tag, present, total) for tag, (present, total) in counts.items()]
    # Timestamp-style tags sort newest first.
    return sorted(statuses, key=lambda st: st.tag, reverse=True)


class SnapshotService:
    def __init__(self, qemu: QemuImg) -> None:
        self.qemu = qemu

    def list_entries(self, disk: Path) -> List[SnapshotEntry]:
        return parse_snapshot_list(self.qemu.snapshot_list(disk))

    def list_tag_statuses(self, vm: VirtualMachine) -> List[SnapshotTagStatus]:
        total = len(vm.disk_paths)
        counts: Dict[str, List[int]] = {}
        for disk in vm.disk_paths:
            for tag in {entry.tag for entry in self.list_entries(disk)}:
                counts.setdefault(tag, [0, total])[0] += 1
        return _sorted_statuses(counts)

    def create_snapshot(self, tag: str, vm: VirtualMachine) -> None:
        for disk in vm.disk_paths:
            self.qemu.snapshot_create(tag, disk)

    def delete_snapshot(self, tag: str, vm: VirtualMachine) -> None:
        for disk in vm.disk_paths:
            self.qemu.snapshot_delete(tag, disk)


@dataclass
class SnapshotAggregation:
    tags: List[SnapshotTagStatus] = field(default_factory=list)
    failures: List[str] = field(default_factory=list)


def aggregate_tag_statuses(service: SnapshotService, vms: Sequence[VirtualMachine]) -> SnapshotAggregation:
    """Combine tag statuses of several VMs; one VM's failure does not hide the others."""
    present: Dict[str, int] = {}
    failures: List[str] = []
    total_disks = 0
    for vm in vms:
        if not vm.disk_paths:
            continue
        try:
            statuses = service.list_tag_statuses(vm)
        except ManagerError as exc:
            failures.append(f"{vm.name}: {exc}")
            continue
        total_disks += len(vm.disk_paths)
        for st in statuses:
            present[st.tag] = present.get(st.tag, 0) + st.present_on_disk_count
    counts = {tag: [count, total_disks] for tag, count in present.items()}
    return SnapshotAggregation(tags=_sorted_statuses(counts), failures=failures)


def create_snapshot_for_all(service: SnapshotService, tag: str, vms: Sequence[VirtualMachine]) -> None:
    """Create ``tag`` on every disk; stops at the first failure."""
    for vm in vms:
        if not vm.disk_paths:
            continue
        log("INFO", f"Creating snapshot '{tag}' for {vm.name} ({len(vm.disk_paths)} disk(s))")
        service.create_snapshot(tag, vm)


def delete_snapshot_for_all(service: SnapshotService, tag: str, vms: Sequence[VirtualMachine]) -> List[str]:
    failures: List[str] = []
    for vm in vms:
        if not vm.disk_paths:
            continue
        try:
            service.delete_snapshot(tag, vm)
        except ManagerError as exc:
            failures.append(f"{vm.name}: {exc}")
    return failures
