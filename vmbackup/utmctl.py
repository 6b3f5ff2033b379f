"""Thin wrapper around UTM's ``utmctl`` command-line control tool."""

from __future__ import annotations

import enum
from pathlib import Path
from typing import List, Optional

from vmbackup.constants import PERMISSION_DENIED_MARKER, UUID_LINE_RE
from vmbackup.exceptions import UTMCtlError
from vmbackup.models import ProcessResult, RuntimeStatus, RuntimeVM
from vmbackup.process import ProcessRunner


class StopMethod(str, enum.Enum):
    REQUEST = "request"
    FORCE = "force"
    KILL = "kill"

    @property
    def flag(self) -> str:
        return f"--{self.value}"

    @property
    def label(self) -> str:
        return {"request": "Graceful", "force": "Force", "kill": "Kill"}[self.value]


def describe_failure(result: ProcessResult) -> str:
    combined = f"{result.stdout}\n{result.stderr}"
    if PERMISSION_DENIED_MARKER in combined:
        return (
            f"utmctl is blocked by Apple Events permissions (OSStatus {PERMISSION_DENIED_MARKER}).\n"
            "Grant Automation permission so this tool can control UTM, then retry.\n"
            f"stdout:\n{result.stdout}\nstderr:\n{result.stderr}"
        )
    return f"utmctl failed (code {result.code}).\nstdout:\n{result.stdout}\nstderr:\n{result.stderr}"


def parse_list_output(output: str) -> List[RuntimeVM]:
    """Parse ``utmctl list``: a header line followed by ``UUID STATUS NAME`` rows."""
    entries: List[RuntimeVM] = []
    for raw in output.splitlines():
        line = raw.strip()
        if not line or line.startswith("UUID"):
            continue
        match = UUID_LINE_RE.match(line)
        if match is None:
            raise UTMCtlError(f"Unexpected utmctl output.\n{output}")
        uuid, status, name = match.groups()
        entries.append(RuntimeVM(uuid=uuid, name=name, status=RuntimeStatus.parse(status)))
    return entries


class UTMCtl:
    def __init__(self, executable: Path, runner: Optional[ProcessRunner] = None) -> None:
        self.executable = executable
        self.runner = runner or ProcessRunner()

    def run(self, args: List[str]) -> ProcessResult:
        return self.runner.run(self.executable, args)

    def _run_expect_success(self, args: List[str]) -> ProcessResult:
        result = self.run(args)
        if result.code != 0:
            raise UTMCtlError(describe_failure(result))
        return result

    def list_virtual_machines(self) -> List[RuntimeVM]:
        result = self._run_expect_success(["list"])
        stderr = result.stderr.strip()
        # utmctl can print Apple Event errors and still exit 0.
        if stderr and ("error from event" in stderr.lower() or PERMISSION_DENIED_MARKER in stderr):
            raise UTMCtlError(describe_failure(result))
        return parse_list_output(result.stdout)

    def status(self, identifier: str) -> RuntimeStatus:
        result = self._run_expect_success(["status", identifier])
        text = result.stdout.strip()
        if not text:
            raise UTMCtlError(f"Unexpected utmctl output.\n{result.stdout}")
        return RuntimeStatus.parse(text)

    def start(self, identifier: str) -> None:
        self._run_expect_success(["start", identifier])

    def suspend(self, identifier: str) -> None:
        self._run_expect_success(["suspend", identifier])

    def stop(self, identifier: str, method: StopMethod = StopMethod.REQUEST) -> None:
        self._run_expect_success(["stop", method.flag, identifier])
