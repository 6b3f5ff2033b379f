"""Console rendering of backup events for VM-Backup-Runner."""

from __future__ import annotations

import dataclasses
import sys
from typing import Dict, Optional, TextIO

from vmbackup.models import BackupEvent, BackupJob, BackupState, JobsInitialized, JobUpdated, LogLine, RunOutcome
from vmbackup.utils import log

_STATE_LEVELS = {
    BackupState.SUCCEEDED: "SUCCESS",
    BackupState.FAILED: "ERROR",
    BackupState.CANCELLED: "WARN",
}


class BackupStatusBoard:
    """Owns the presentation copy of the job table and applies events in order."""

    def __init__(self, stream: Optional[TextIO] = None, show_progress: Optional[bool] = None) -> None:
        self.stream = stream or sys.stdout
        if show_progress is None:
            try:
                show_progress = self.stream.isatty()
            except (AttributeError, ValueError):
                show_progress = False
        self.show_progress = show_progress
        self.jobs: Dict[str, BackupJob] = {}
        self._bar_active = False

    def apply(self, event: BackupEvent) -> None:
        if isinstance(event, JobsInitialized):
            for job in event.jobs:
                self.jobs[job.id] = dataclasses.replace(job)
            self._end_bar()
            log("INFO", f"Queued {len(event.jobs)} backup job(s)")
        elif isinstance(event, JobUpdated):
            self._apply_update(event)
        elif isinstance(event, LogLine):
            self._end_bar()
            log("INFO", event.line)

    __call__ = apply

    def _apply_update(self, event: JobUpdated) -> None:
        job = self.jobs.get(event.job_id)
        if job is None:
            return
        changed = job.state is not event.state
        job.state = event.state
        job.detail = event.detail
        if event.progress is not None:
            job.progress = event.progress

        if changed:
            self._end_bar()
            level = _STATE_LEVELS.get(event.state, "INFO")
            log(level, f"{job.vm_name}: {event.state.label} ({event.detail})")
        if self.show_progress and not event.state.is_terminal:
            self._draw_bar(job)

    def _draw_bar(self, job: BackupJob) -> None:
        bar_len = 30
        filled = int(bar_len * job.progress)
        bar = "#" * filled + "-" * (bar_len - filled)
        self.stream.write(f"\r  [{bar}] {job.progress * 100:5.1f}% {job.vm_name} ({job.state.label})")
        self.stream.flush()
        self._bar_active = True

    def _end_bar(self) -> None:
        if self._bar_active:
            self.stream.write("\n")
            self.stream.flush()
            self._bar_active = False


def report_outcome(outcome: RunOutcome) -> int:
    """Log a consolidated summary and return the process exit code."""
    if outcome.startup_error:
        log("ERROR", outcome.startup_error)
        return 1

    counts = {state: 0 for state in BackupState}
    for job in outcome.jobs:
        counts[job.state] += 1
    log(
        "INFO",
        f"Backups: {counts[BackupState.SUCCEEDED]} succeeded, {counts[BackupState.FAILED]} failed, "
        f"{counts[BackupState.CANCELLED]} cancelled",
    )
    if outcome.failures:
        log("ERROR", "Backup completed with errors:\n" + "\n".join(outcome.failures))
        return 1
    if outcome.succeeded:
        log("SUCCESS", "All backups completed.")
        return 0
    log("WARN", "Backup cancelled.")
    return 130
