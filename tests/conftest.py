"""Shared test fixtures: fake VM bundles, VMs and an in-process archiver runner."""

from __future__ import annotations

import os
import plistlib
import threading
import time
import zipfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from vmbackup.exceptions import ProcessCancelled
from vmbackup.models import BackupRequest, ProcessResult, VirtualMachine


class FakeZipRunner:
    """Stands in for ProcessRunner when driving the zip-flavoured Archiver.

    Writes a real archive with zipfile unless ``result`` is set, in which case
    that result is returned without touching the filesystem.
    """

    def __init__(self, result: Optional[ProcessResult] = None) -> None:
        self.result = result
        self.calls: List[Dict] = []

    def run(self, executable, args, cancellation_token=None, cwd=None) -> ProcessResult:
        self.calls.append({"executable": executable, "args": list(args), "cwd": cwd})
        if cancellation_token is not None and cancellation_token.is_cancelled():
            raise ProcessCancelled()
        if self.result is not None:
            return self.result

        archive_path = Path(args[2])
        source = Path(cwd) / args[3]
        with zipfile.ZipFile(archive_path, "w") as zf:
            zf.write(source, source.name)
            for root, _dirs, files in os.walk(source):
                for name in files:
                    full = Path(root) / name
                    zf.write(full, str(full.relative_to(source.parent)))
        return ProcessResult(0, "", "")


@pytest.fixture
def make_bundle(tmp_path):
    """Create ``<parent>/<name>.utm`` with a config.plist and the given disk files."""

    def _make(
        name: str = "Linux",
        parent: Optional[Path] = None,
        uuid: str = "",
        disks: Optional[Dict[str, bytes]] = None,
        with_config: bool = True,
    ) -> Path:
        base = parent or (tmp_path / "vms")
        bundle = base / f"{name}.utm"
        (bundle / "Data").mkdir(parents=True)
        if with_config:
            info = {"Name": name}
            if uuid:
                info["UUID"] = uuid
            with open(bundle / "config.plist", "wb") as fh:
                plistlib.dump({"Information": info}, fh)
        for disk_name, content in (disks or {}).items():
            (bundle / "Data" / disk_name).write_bytes(content)
        return bundle

    return _make


@pytest.fixture
def make_vm():
    def _make(name: str, bundle: Optional[Path], **kwargs) -> VirtualMachine:
        return VirtualMachine(
            id=kwargs.pop("id", str(bundle) if bundle else name.lower()),
            name=name,
            bundle_path=bundle,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_request(tmp_path):
    def _make(targets, destination: Optional[Path] = None, run_id: str = "run-1") -> BackupRequest:
        return BackupRequest(
            run_id=run_id,
            targets=list(targets),
            destination_dir=destination or (tmp_path / "backups"),
            started_at=datetime(2026, 3, 4, 5, 6, 7),
        )

    return _make


@pytest.fixture
def fake_runner():
    return FakeZipRunner()


# Environment variables read by parse_env(); cleared for a clean slate.
_PARSE_ENV_VARS = ["VM_SEARCH_DIRS", "BACKUP_DIR", "UTMCTL_PATH", "ARCHIVER"]


@pytest.fixture
def clean_env(monkeypatch):
    for key in _PARSE_ENV_VARS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def utc_moment():
    return datetime(2026, 3, 4, 5, 6, 7, tzinfo=timezone.utc)


def wait_for_file(path: Path, timeout: float = 10.0) -> str:
    """Poll until ``path`` holds a complete line and return it stripped."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if path.exists():
            text = path.read_text()
            if text.endswith("\n"):
                return text.strip()
        time.sleep(0.01)
    raise AssertionError(f"{path} never appeared")


@pytest.fixture
def interrupt_child():
    """Cancel a token, then signal the child whose pid lands in ``pid_file``.

    Mimics Ctrl-C in a terminal, where the child may be hit before the watcher looks.
    """
    threads: List[threading.Thread] = []

    def _start(token, pid_file: Path, signum: int) -> None:
        def _run() -> None:
            pid = int(wait_for_file(pid_file))
            token.cancel()
            os.kill(pid, signum)

        thread = threading.Thread(target=_run, daemon=True)
        thread.start()
        threads.append(thread)

    yield _start
    for thread in threads:
        thread.join(timeout=10)
