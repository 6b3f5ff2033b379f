"""Backup run orchestration: copy, archive and finalize one VM bundle at a time."""

from __future__ import annotations

import dataclasses
import os
import threading
import uuid
from pathlib import Path
from typing import Callable, List, Optional, Set

from vmbackup.archiver import Archiver
from vmbackup.cancellation import CancellationRegistry, CancellationToken
from vmbackup.constants import ARCHIVE_SUFFIX, COPY_PROGRESS_SHARE, WORKING_DIR_PREFIX
from vmbackup.copier import copy_tree, directory_byte_size
from vmbackup.exceptions import BackupCancelled, CopyFailedError, ManagerError, UnavailableBundleError
from vmbackup.models import (
    BackupEvent,
    BackupJob,
    BackupRequest,
    BackupState,
    JobsInitialized,
    JobUpdated,
    LogLine,
    RunOutcome,
    VirtualMachine,
)
from vmbackup.process import ProcessRunner
from vmbackup.safety import remove_with_retries, validate_backup_paths
from vmbackup.utils import backup_timestamp, ensure_directory, log, sanitize_filename_component

EventSink = Callable[[BackupEvent], None]


def archive_filename(vm_name: str, timestamp: str, suffix: str = "") -> str:
    tail = f"_{suffix}" if suffix else ""
    return f"{sanitize_filename_component(vm_name)}_{timestamp}{tail}{ARCHIVE_SUFFIX}"


def initial_jobs(request: BackupRequest) -> List[BackupJob]:
    epoch = request.started_at.timestamp()
    return [BackupJob(id=f"{request.run_id}:{vm.id}:{epoch}", vm_name=vm.name) for vm in request.targets]


class _RunContext:
    """Mutable state of one run; never shared with another run."""

    def __init__(self, request: BackupRequest, on_event: EventSink, token: CancellationToken) -> None:
        self.request = request
        self.token = token
        self.jobs = initial_jobs(request)
        self.failures: List[str] = []
        self.archive_names: Set[str] = set()
        self._on_event = on_event
        self._emit_lock = threading.Lock()

    def emit(self, event: BackupEvent) -> None:
        # The archive poller reports from its own thread.
        with self._emit_lock:
            self._on_event(event)

    def update(self, index: int, state: BackupState, detail: str, progress: Optional[float] = None) -> None:
        job = self.jobs[index]
        if job.state.is_terminal:
            return
        if progress is not None:
            progress = max(job.progress, max(0.0, min(1.0, progress)))
            job.progress = progress
        job.state = state
        job.detail = detail
        self.emit(JobUpdated(job_id=job.id, state=state, detail=detail, progress=progress))

    def snapshot(self) -> List[BackupJob]:
        return [dataclasses.replace(job) for job in self.jobs]


class BackupCoordinator:
    """Runs backup requests and lets callers cancel them by run id.

    ``run`` blocks until every job of the request is terminal. Several runs may
    execute at once on different threads; the only state they share is the
    cancellation registry.
    """

    def __init__(self, runner: Optional[ProcessRunner] = None, archiver: Optional[Archiver] = None) -> None:
        self.runner = runner or ProcessRunner()
        self.archiver = archiver or Archiver(self.runner)
        self.registry = CancellationRegistry()

    def cancel_run(self, run_id: str) -> None:
        if self.registry.cancel(run_id):
            log("INFO", f"Cancellation requested for backup run {run_id}")

    def cancel_all_runs(self) -> None:
        count = self.registry.cancel_all()
        if count:
            log("INFO", f"Cancellation requested for {count} backup run(s)")

    def run(
        self,
        request: BackupRequest,
        on_event: EventSink,
        cancel_signal: Optional[CancellationToken] = None,
    ) -> RunOutcome:
        if not request.targets:
            return RunOutcome(
                jobs=[],
                failures=[],
                cancellation_requested=bool(cancel_signal and cancel_signal.is_cancelled()),
                startup_error="No backup targets were selected.",
            )

        token = CancellationToken(parent=cancel_signal)
        self.registry.register(request.run_id, token)
        try:
            return self._run(_RunContext(request, on_event, token))
        finally:
            self.registry.unregister(request.run_id)

    def _run(self, ctx: _RunContext) -> RunOutcome:
        request = ctx.request
        ctx.emit(JobsInitialized(jobs=ctx.snapshot()))

        try:
            ensure_directory(request.destination_dir)
        except OSError as exc:
            return RunOutcome(
                jobs=ctx.snapshot(),
                failures=[],
                cancellation_requested=ctx.token.is_cancelled(),
                startup_error=f"Cannot prepare backup directory: {exc}",
            )

        timestamp = backup_timestamp(request.started_at)
        log("DEBUG", f"Backing up {len(request.targets)} VM(s) to {request.destination_dir}")

        for index, vm in enumerate(request.targets):
            if ctx.token.is_cancelled():
                ctx.update(index, BackupState.CANCELLED, "Cancelled", 1.0)
                continue
            self._run_job(ctx, index, vm, timestamp)

        return RunOutcome(
            jobs=ctx.snapshot(),
            failures=list(ctx.failures),
            cancellation_requested=ctx.token.is_cancelled(),
        )

    def _run_job(self, ctx: _RunContext, index: int, vm: VirtualMachine, timestamp: str) -> None:
        try:
            if not vm.path_is_resolved:
                raise UnavailableBundleError()
            ctx.update(index, BackupState.COPYING, "Copying VM bundle", 0.0)
            ctx.emit(LogLine(f"Backup: copying {vm.name}"))
            archive_path = self._perform_backup(ctx, index, vm, timestamp)
        except BackupCancelled:
            ctx.update(index, BackupState.CANCELLED, "Cancelled", 1.0)
            ctx.emit(LogLine(f"Backup cancelled for {vm.name}"))
            log("DEBUG", f"Backup cancelled for {vm.name}")
        except Exception as exc:
            # A failed job never stops the remaining jobs.
            message = str(exc)
            ctx.failures.append(f"{vm.name}: {message}")
            ctx.update(index, BackupState.FAILED, message, 1.0)
            ctx.emit(LogLine(f"Backup failed for {vm.name}: {message}"))
            log("DEBUG", f"Backup failed for {vm.name}: {message}")
        else:
            ctx.update(index, BackupState.SUCCEEDED, archive_path.name, 1.0)
            ctx.emit(LogLine(f"Backup complete for {vm.name} -> {archive_path}"))
            log("DEBUG", f"Backup complete for {vm.name} -> {archive_path}")

    def _perform_backup(self, ctx: _RunContext, index: int, vm: VirtualMachine, timestamp: str) -> Path:
        assert vm.bundle_path is not None
        bundle = vm.bundle_path
        destination = ctx.request.destination_dir
        token = ctx.token

        if token.is_cancelled():
            raise BackupCancelled()

        name = self._reserve_archive_name(ctx, vm.name, timestamp)
        archive_path = destination / name
        working_root = destination / f"{WORKING_DIR_PREFIX}{uuid.uuid4().hex}"
        copied_bundle = working_root / bundle.name
        staged_archive = working_root / name

        validate_backup_paths(bundle, destination, working_root, copied_bundle)
        total_bytes = directory_byte_size(bundle)

        def on_copy(copied: int) -> None:
            fraction = copied / total_bytes if total_bytes > 0 else 1.0
            ctx.update(index, BackupState.COPYING, "Copying VM bundle", fraction * COPY_PROGRESS_SHARE)

        def on_archive(progress: float) -> None:
            ctx.update(index, BackupState.ARCHIVING, "Creating ZIP archive", progress)

        try:
            try:
                working_root.mkdir(parents=True)
            except OSError as exc:
                raise CopyFailedError(f"Cannot create working directory: {exc}") from exc
            copy_tree(bundle, copied_bundle, token, progress=on_copy, total_bytes=total_bytes)
            self.archiver.create(copied_bundle, staged_archive, total_bytes, token, progress=on_archive)
            if token.is_cancelled():
                raise BackupCancelled()
            self._finalize(staged_archive, archive_path)
        except BaseException:
            remove_with_retries(staged_archive, destination)
            remove_with_retries(working_root, destination)
            raise

        remove_with_retries(working_root, destination)
        return archive_path

    @staticmethod
    def _reserve_archive_name(ctx: _RunContext, vm_name: str, timestamp: str) -> str:
        """Archive name unique within the run and the destination directory."""
        name = archive_filename(vm_name, timestamp)
        while name in ctx.archive_names or os.path.lexists(ctx.request.destination_dir / name):
            name = archive_filename(vm_name, timestamp, uuid.uuid4().hex[:6])
        ctx.archive_names.add(name)
        return name

    @staticmethod
    def _finalize(staged_archive: Path, archive_path: Path) -> None:
        try:
            os.replace(staged_archive, archive_path)
        except OSError as exc:
            raise ManagerError(f"Cannot move archive into place: {exc}") from exc
