"""Tests for vmbackup.utmctl module."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from vmbackup.exceptions import UTMCtlError
from vmbackup.models import ProcessResult, RuntimeStatus
from vmbackup.utmctl import StopMethod, UTMCtl, describe_failure, parse_list_output

UUID_A = "5B8F1C2E-1111-4A4A-9C9C-0123456789AB"
UUID_B = "6C9A2D3F-2222-4B4B-8D8D-FEDCBA987654"

LIST_OUTPUT = f"""UUID                                 Status   Name
{UUID_A} started  Ubuntu Server
{UUID_B} stopped  Windows 11
"""


def _utmctl(result: ProcessResult):
    runner = MagicMock()
    runner.run.return_value = result
    return UTMCtl(Path("/Applications/UTM.app/Contents/MacOS/utmctl"), runner), runner


class TestParseListOutput:
    def test_parses_rows(self):
        entries = parse_list_output(LIST_OUTPUT)
        assert [(e.uuid, e.status, e.name) for e in entries] == [
            (UUID_A, RuntimeStatus.STARTED, "Ubuntu Server"),
            (UUID_B, RuntimeStatus.STOPPED, "Windows 11"),
        ]

    def test_unknown_status(self):
        assert parse_list_output(f"{UUID_A} weird  VM")[0].status is RuntimeStatus.UNKNOWN

    def test_empty(self):
        assert parse_list_output("UUID Status Name\n\n") == []

    def test_malformed_row(self):
        with pytest.raises(UTMCtlError, match="Unexpected utmctl output"):
            parse_list_output("garbage line")


class TestDescribeFailure:
    def test_permission_denied(self):
        message = describe_failure(ProcessResult(1, "", "Error from event: OSStatus -1743"))
        assert "Apple Events" in message

    def test_generic(self):
        assert "code 3" in describe_failure(ProcessResult(3, "", "boom"))


class TestUTMCtl:
    def test_list(self):
        ctl, runner = _utmctl(ProcessResult(0, LIST_OUTPUT, ""))
        assert len(ctl.list_virtual_machines()) == 2
        runner.run.assert_called_once_with(ctl.executable, ["list"])

    def test_list_event_error_with_zero_exit(self):
        ctl, _ = _utmctl(ProcessResult(0, "", "Error from event: something"))
        with pytest.raises(UTMCtlError):
            ctl.list_virtual_machines()

    def test_nonzero_exit(self):
        ctl, _ = _utmctl(ProcessResult(1, "", "nope"))
        with pytest.raises(UTMCtlError, match="code 1"):
            ctl.start(UUID_A)

    def test_status(self):
        ctl, _ = _utmctl(ProcessResult(0, "paused\n", ""))
        assert ctl.status(UUID_A) is RuntimeStatus.PAUSED

    def test_status_empty_output(self):
        ctl, _ = _utmctl(ProcessResult(0, "", ""))
        with pytest.raises(UTMCtlError):
            ctl.status(UUID_A)

    def test_stop_methods(self):
        ctl, runner = _utmctl(ProcessResult(0, "", ""))
        ctl.stop(UUID_A, StopMethod.KILL)
        runner.run.assert_called_with(ctl.executable, ["stop", "--kill", UUID_A])
        ctl.stop(UUID_A)
        runner.run.assert_called_with(ctl.executable, ["stop", "--request", UUID_A])

    def test_suspend(self):
        ctl, runner = _utmctl(ProcessResult(0, "", ""))
        ctl.suspend(UUID_B)
        runner.run.assert_called_once_with(ctl.executable, ["suspend", UUID_B])


class TestStopMethod:
    def test_labels(self):
        assert StopMethod.REQUEST.label == "Graceful"
        assert StopMethod.FORCE.flag == "--force"
