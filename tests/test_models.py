"""Tests for vmbackup.models module."""

from __future__ import annotations

from pathlib import Path

from vmbackup.models import (
    BackupJob,
    BackupState,
    PathResolution,
    PathResolutionStatus,
    RunOutcome,
    RuntimeStatus,
    SnapshotTagStatus,
    VirtualMachine,
)


class TestBackupState:
    def test_terminal_states(self):
        terminal = {s for s in BackupState if s.is_terminal}
        assert terminal == {BackupState.SUCCEEDED, BackupState.FAILED, BackupState.CANCELLED}

    def test_label(self):
        assert BackupState.ARCHIVING.label == "Archiving"


class TestBackupJob:
    def test_defaults(self):
        job = BackupJob(id="r:1", vm_name="Linux")
        assert job.state is BackupState.QUEUED
        assert job.detail == "Queued"
        assert job.progress == 0.0


class TestVirtualMachine:
    def test_resolved(self):
        assert VirtualMachine("1", "A", Path("/A.utm")).path_is_resolved

    def test_missing_bundle(self):
        assert not VirtualMachine("1", "A", None).path_is_resolved

    def test_blocked_resolution(self):
        resolution = PathResolution(PathResolutionStatus.AMBIGUOUS, "two candidates")
        vm = VirtualMachine("1", "A", Path("/A.utm"), path_resolution=resolution)
        assert not vm.path_is_resolved
        assert vm.path_resolution.blocked_reason == "two candidates"
        assert PathResolution().blocked_reason is None


class TestRuntimeStatus:
    def test_parse(self):
        assert RuntimeStatus.parse(" Started ") is RuntimeStatus.STARTED
        assert RuntimeStatus.parse("bogus") is RuntimeStatus.UNKNOWN


class TestSnapshotTagStatus:
    def test_consistency(self):
        assert SnapshotTagStatus("t", 2, 2).consistency == "consistent"
        assert SnapshotTagStatus("t", 1, 2).consistency == "partial"


class TestRunOutcome:
    def test_succeeded(self):
        done = BackupJob("r:1", "A", BackupState.SUCCEEDED, "a.zip", 1.0)
        assert RunOutcome([done], [], False).succeeded
        assert not RunOutcome([done], ["B: x"], False).succeeded
        assert not RunOutcome([], [], False, startup_error="boom").succeeded
        cancelled = BackupJob("r:2", "B", BackupState.CANCELLED, "Cancelled", 1.0)
        assert not RunOutcome([done, cancelled], [], True).succeeded
