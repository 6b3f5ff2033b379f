"""Data models for VM-Backup-Runner."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional, Union


class ProcessResult(NamedTuple):
    code: int
    stdout: str
    stderr: str


class PathResolutionStatus(str, enum.Enum):
    RESOLVED = "resolved"
    UNRESOLVED = "unresolved"
    AMBIGUOUS = "ambiguous"


@dataclass(frozen=True)
class PathResolution:
    status: PathResolutionStatus = PathResolutionStatus.RESOLVED
    reason: Optional[str] = None

    @property
    def blocked_reason(self) -> Optional[str]:
        if self.status is PathResolutionStatus.RESOLVED:
            return None
        return self.reason


@dataclass(frozen=True)
class DiscoveredBundle:
    uuid: str
    name: str
    bundle_path: Path
    disk_paths: List[Path] = field(default_factory=list)


@dataclass(frozen=True)
class VirtualMachine:
    id: str
    name: str
    bundle_path: Optional[Path]
    disk_paths: List[Path] = field(default_factory=list)
    control_identifier: Optional[str] = None
    path_resolution: PathResolution = PathResolution()

    @property
    def path_is_resolved(self) -> bool:
        return self.bundle_path is not None and self.path_resolution.status is PathResolutionStatus.RESOLVED


class RuntimeStatus(str, enum.Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    STARTED = "started"
    PAUSING = "pausing"
    PAUSED = "paused"
    RESUMING = "resuming"
    STOPPING = "stopping"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: str) -> "RuntimeStatus":
        try:
            return cls(raw.strip().lower())
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class RuntimeVM:
    """One line of `utmctl list`."""

    uuid: str
    name: str
    status: RuntimeStatus


@dataclass(frozen=True)
class VMRuntimeInfo:
    status: RuntimeStatus
    control_identifier: Optional[str]
    detail: Optional[str] = None


@dataclass(frozen=True)
class SnapshotEntry:
    numeric_id: str
    tag: str
    vm_size: str
    date: str
    vm_clock: str
    icount: str

    @property
    def id(self) -> str:
        return f"{self.numeric_id}:{self.tag}"


@dataclass(frozen=True)
class SnapshotTagStatus:
    tag: str
    present_on_disk_count: int
    total_disk_count: int

    @property
    def consistency(self) -> str:
        return "consistent" if self.present_on_disk_count == self.total_disk_count else "partial"


class BackupState(str, enum.Enum):
    QUEUED = "queued"
    COPYING = "copying"
    ARCHIVING = "archiving"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def label(self) -> str:
        return self.value.capitalize()

    @property
    def is_terminal(self) -> bool:
        return self in (BackupState.SUCCEEDED, BackupState.FAILED, BackupState.CANCELLED)


@dataclass
class BackupJob:
    id: str
    vm_name: str
    state: BackupState = BackupState.QUEUED
    detail: str = "Queued"
    progress: float = 0.0


@dataclass(frozen=True)
class BackupRequest:
    run_id: str
    targets: List[VirtualMachine]
    destination_dir: Path
    started_at: datetime


@dataclass(frozen=True)
class JobsInitialized:
    jobs: List[BackupJob]


@dataclass(frozen=True)
class JobUpdated:
    job_id: str
    state: BackupState
    detail: str
    progress: Optional[float] = None


@dataclass(frozen=True)
class LogLine:
    line: str


BackupEvent = Union[JobsInitialized, JobUpdated, LogLine]


@dataclass(frozen=True)
class RunOutcome:
    jobs: List[BackupJob]
    failures: List[str]
    cancellation_requested: bool
    startup_error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        if self.startup_error or self.failures:
            return False
        return all(job.state is BackupState.SUCCEEDED for job in self.jobs)


@dataclass(frozen=True)
class PathDiagnostics:
    unresolved_count: int = 0
    ambiguous_count: int = 0


@dataclass(frozen=True)
class RuntimeInventory:
    vms: List[VirtualMachine]
    runtime_info: Dict[str, VMRuntimeInfo]
    diagnostics: PathDiagnostics


@dataclass(frozen=True)
class ControlOutcome:
    controlled: List[VirtualMachine]
    skipped_count: int


@dataclass
class Settings:
    vm_search_directories: List[Path]
    backup_directory: Path
    utmctl_path: Path
    archiver: str = "auto"
