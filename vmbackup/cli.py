"""CLI entry points for VM-Backup-Runner."""

from __future__ import annotations

import argparse
import dataclasses
import signal
import uuid
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from vmbackup.archiver import Archiver
from vmbackup.config import SettingsStore, parse_env, resolve_backup_directory
from vmbackup.discovery import bundles_to_vms, discover_bundles
from vmbackup.exceptions import ManagerError
from vmbackup.inventory import control, load_runtime_inventory
from vmbackup.models import BackupRequest, Settings, VirtualMachine, VMRuntimeInfo
from vmbackup.pipeline import BackupCoordinator
from vmbackup.process import ProcessRunner
from vmbackup.runtime import RuntimeInfo, detect_runtime, require_tool
from vmbackup.snapshots import (
    QemuImg,
    SnapshotService,
    aggregate_tag_statuses,
    create_snapshot_for_all,
    delete_snapshot_for_all,
)
from vmbackup.status import BackupStatusBoard, report_outcome
from vmbackup.utils import backup_timestamp, format_bytes, log
from vmbackup.utmctl import StopMethod, UTMCtl


def load_vms(settings: Settings, runtime: RuntimeInfo) -> Tuple[List[VirtualMachine], Dict[str, VMRuntimeInfo]]:
    """Inventory from utmctl when available, otherwise from bundles on disk alone."""
    discovered = discover_bundles(settings.vm_search_directories)
    if runtime.utmctl is not None:
        try:
            inventory = load_runtime_inventory(UTMCtl(runtime.utmctl), discovered)
        except ManagerError as exc:
            log("WARN", f"Runtime inventory unavailable, using bundles on disk: {exc}")
        else:
            return inventory.vms, inventory.runtime_info
    return bundles_to_vms(discovered), {}


def select_vms(vms: Sequence[VirtualMachine], names: Sequence[str], select_all: bool) -> List[VirtualMachine]:
    if select_all:
        return list(vms)
    if not names:
        raise ManagerError("Name at least one VM or pass --all")
    selected: List[VirtualMachine] = []
    for name in names:
        key = name.strip().lower()
        matches = [vm for vm in vms if vm.name.lower() == key or vm.id.lower() == key]
        if not matches:
            available = ", ".join(vm.name for vm in vms) or "<none>"
            raise ManagerError(f"Unknown VM '{name}'. Available: {available}")
        for vm in matches:
            if vm not in selected:
                selected.append(vm)
    return selected


def list_vms(settings: Settings, runtime: RuntimeInfo) -> int:
    vms, runtime_info = load_vms(settings, runtime)
    if not vms:
        log("WARN", "No VMs found in: " + ", ".join(str(p) for p in settings.vm_search_directories))
        return 0
    width = max(len(vm.name) for vm in vms)
    for vm in vms:
        info = runtime_info.get(vm.id)
        status = info.status.value if info else "-"
        location = str(vm.bundle_path) if vm.bundle_path else (vm.path_resolution.blocked_reason or "no bundle")
        size = format_bytes(sum(disk.stat().st_size for disk in vm.disk_paths if disk.exists()))
        print(f"  {vm.name:<{width}}  {status:<9} disks={len(vm.disk_paths)} ({size})  {location}")
    return 0


def run_backup(
    settings: Settings,
    runtime: RuntimeInfo,
    names: Sequence[str],
    select_all: bool,
    destination: Optional[Path] = None,
) -> int:
    archiver_path = require_tool(
        runtime.archiver,
        "Archiver",
        "Install 'zip' or set ARCHIVER=ditto on macOS.",
    )
    vms, _ = load_vms(settings, runtime)
    targets = select_vms(vms, names, select_all)
    if destination is not None:
        settings = dataclasses.replace(settings, backup_directory=destination)
    backup_dir = resolve_backup_directory(settings)

    runner = ProcessRunner()
    coordinator = BackupCoordinator(
        runner=runner,
        archiver=Archiver(runner, executable=archiver_path, flavor=runtime.archiver_flavor or "zip"),
    )
    request = BackupRequest(
        run_id=str(uuid.uuid4()),
        targets=targets,
        destination_dir=backup_dir,
        started_at=datetime.now().astimezone(),
    )
    board = BackupStatusBoard()

    def _cancel(signum, frame):
        coordinator.cancel_all_runs()

    prev_sigint = signal.signal(signal.SIGINT, _cancel)
    prev_sigterm = signal.signal(signal.SIGTERM, _cancel)
    try:
        outcome = coordinator.run(request, board)
    finally:
        signal.signal(signal.SIGINT, prev_sigint)
        signal.signal(signal.SIGTERM, prev_sigterm)
    return report_outcome(outcome)


def run_snapshot(settings: Settings, runtime: RuntimeInfo, args: argparse.Namespace) -> int:
    qemu_path = require_tool(runtime.qemu_img, "qemu-img", "Install it with 'brew install qemu' or add it to PATH.")
    service = SnapshotService(QemuImg(qemu_path))
    vms, _ = load_vms(settings, runtime)
    targets = select_vms(vms, args.names, args.all)

    if args.snapshot_command == "list":
        result = aggregate_tag_statuses(service, targets)
        for st in result.tags:
            print(f"  {st.tag}  {st.consistency} ({st.present_on_disk_count}/{st.total_disk_count} disks)")
        if not result.tags:
            log("INFO", "No snapshots found")
        for failure in result.failures:
            log("ERROR", failure)
        return 1 if result.failures else 0

    if args.snapshot_command == "create":
        tag = args.tag or backup_timestamp(datetime.now())
        create_snapshot_for_all(service, tag, targets)
        log("SUCCESS", f"Snapshot '{tag}' created")
        return 0

    failures = delete_snapshot_for_all(service, args.tag, targets)
    for failure in failures:
        log("ERROR", failure)
    if failures:
        return 1
    log("SUCCESS", f"Snapshot '{args.tag}' deleted")
    return 0


def run_control(settings: Settings, runtime: RuntimeInfo, args: argparse.Namespace) -> int:
    utmctl_path = require_tool(runtime.utmctl, "utmctl", f"Configure it with 'config set-utmctl' (now {settings.utmctl_path}).")
    utmctl = UTMCtl(utmctl_path)
    inventory = load_runtime_inventory(utmctl, discover_bundles(settings.vm_search_directories))
    targets = select_vms(inventory.vms, args.names, args.all)
    method = StopMethod(args.method) if args.command == "stop" else StopMethod.REQUEST
    outcome = control(targets, inventory.runtime_info, args.command, utmctl, method)
    if outcome.skipped_count:
        log("WARN", f"Skipped {outcome.skipped_count} VM(s) without a control identifier")
    log("SUCCESS", f"{args.command}: {len(outcome.controlled)} VM(s)")
    return 0


def show_status(settings: Settings, runtime: RuntimeInfo, args: argparse.Namespace) -> int:
    utmctl_path = require_tool(runtime.utmctl, "utmctl", f"Configure it with 'config set-utmctl' (now {settings.utmctl_path}).")
    utmctl = UTMCtl(utmctl_path)
    inventory = load_runtime_inventory(utmctl, discover_bundles(settings.vm_search_directories))
    for vm in select_vms(inventory.vms, args.names, args.all):
        if vm.control_identifier:
            print(f"  {vm.name}: {utmctl.status(vm.control_identifier).value}")
    return 0


def show_config(settings: Settings) -> None:
    """Print the resolved settings."""
    for field in dataclasses.fields(settings):
        value = getattr(settings, field.name)
        if isinstance(value, list):
            print(f"  {field.name}:")
            for item in value:
                print(f"    - {item}")
        else:
            print(f"  {field.name}: {value}")


def run_config(args: argparse.Namespace, config_path: Optional[Path]) -> int:
    store = SettingsStore(config_path)
    if args.config_command == "set-backup-dir":
        log("INFO", f"Backup directory: {store.set_backup_directory(Path(args.path))}")
    elif args.config_command == "add-search-dir":
        store.add_search_directory(Path(args.path))
    elif args.config_command == "remove-search-dir":
        store.remove_search_directory(Path(args.path))
    elif args.config_command == "clear-search-dirs":
        store.clear_search_directories()
    elif args.config_command == "set-utmctl":
        log("INFO", f"utmctl: {store.set_utmctl_path(Path(args.path) if args.path else None)}")
    elif args.config_command == "set-archiver":
        store.set_archiver(args.archiver)
    elif args.config_command == "reset":
        store.reset()
    show_config(store.settings)
    return 0


def _add_target_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("names", nargs="*", metavar="VM", help="VM names (or bundle paths)")
    parser.add_argument("--all", action="store_true", help="Select every discovered VM")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Back up, snapshot and control UTM virtual machines")
    parser.add_argument("--config", type=Path, default=None, help="Settings file (default: $CONFIG_PATH)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="List discovered VMs")

    backup = sub.add_parser("backup", help="Create one ZIP archive per VM")
    _add_target_args(backup)
    backup.add_argument("--dest", type=Path, default=None, help="Backup directory for this run")

    snapshot = sub.add_parser("snapshot", help="Manage qemu-img snapshots")
    snap_sub = snapshot.add_subparsers(dest="snapshot_command", required=True)
    _add_target_args(snap_sub.add_parser("list", help="List snapshot tags"))
    snap_create = snap_sub.add_parser("create", help="Create a snapshot tag on every disk")
    snap_create.add_argument("--tag", default=None, help="Snapshot tag (default: timestamp)")
    _add_target_args(snap_create)
    snap_delete = snap_sub.add_parser("delete", help="Delete a snapshot tag from every disk")
    snap_delete.add_argument("--tag", required=True, help="Snapshot tag")
    _add_target_args(snap_delete)

    _add_target_args(sub.add_parser("status", help="Query live VM status through utmctl"))

    for action in ("start", "suspend", "stop"):
        ctl = sub.add_parser(action, help=f"{action.capitalize()} VMs through utmctl")
        _add_target_args(ctl)
        if action == "stop":
            ctl.add_argument("--method", choices=[m.value for m in StopMethod], default="request")

    cfg = sub.add_parser("config", help="Show or change persisted settings")
    cfg_sub = cfg.add_subparsers(dest="config_command", required=True)
    cfg_sub.add_parser("show", help="Show resolved settings")
    for name in ("set-backup-dir", "add-search-dir", "remove-search-dir"):
        cfg_sub.add_parser(name).add_argument("path")
    cfg_sub.add_parser("clear-search-dirs")
    cfg_sub.add_parser("set-utmctl").add_argument("path", nargs="?", default=None)
    cfg_sub.add_parser("set-archiver").add_argument("archiver", choices=["auto", "ditto", "zip"])
    cfg_sub.add_parser("reset")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        if args.command == "config":
            if args.config_command == "show":
                show_config(parse_env(args.config))
                return 0
            return run_config(args, args.config)

        settings = parse_env(args.config)
        runtime = detect_runtime(settings)
        if args.command == "list":
            return list_vms(settings, runtime)
        if args.command == "backup":
            return run_backup(settings, runtime, args.names, args.all, args.dest)
        if args.command == "snapshot":
            return run_snapshot(settings, runtime, args)
        if args.command == "status":
            return show_status(settings, runtime, args)
        return run_control(settings, runtime, args)
    except ManagerError as exc:
        log("ERROR", str(exc))
        return 1
    except Exception as exc:
        log("ERROR", f"Unexpected error: {exc}")
        import traceback

        traceback.print_exc()
        return 1
