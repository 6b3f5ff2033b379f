"""Tests for vmbackup.utils module."""

from __future__ import annotations

import os
from datetime import datetime
from pathlib import Path

from vmbackup.utils import (
    backup_timestamp,
    find_executable,
    format_bytes,
    get_env,
    get_env_paths,
    log,
    natural_sort_key,
    sanitize_filename_component,
)


class TestLog:
    def test_info_level(self, capsys):
        log("INFO", "test message")
        captured = capsys.readouterr()
        assert "[INFO]" in captured.out
        assert "test message" in captured.out

    def test_debug_suppressed_by_default(self, capsys):
        log("DEBUG", "should not appear")
        captured = capsys.readouterr()
        assert captured.out == ""


class TestGetEnv:
    def test_returns_default(self, monkeypatch):
        monkeypatch.delenv("TEST_VAR", raising=False)
        assert get_env("TEST_VAR", "fallback") == "fallback"

    def test_paths(self, monkeypatch):
        monkeypatch.delenv("TEST_PATHS", raising=False)
        assert get_env_paths("TEST_PATHS") is None
        monkeypatch.setenv("TEST_PATHS", os.pathsep.join([" /a ", "", "/b"]))
        assert get_env_paths("TEST_PATHS") == [Path("/a"), Path("/b")]


class TestFindExecutable:
    def test_candidate_wins(self, tmp_path):
        tool = tmp_path / "qemu-img"
        tool.write_text("#!/bin/sh\n")
        tool.chmod(0o755)
        assert find_executable("definitely-not-on-path-xyz", [tmp_path / "missing", tool]) == tool

    def test_not_found(self, tmp_path):
        assert find_executable("definitely-not-on-path-xyz", [tmp_path / "missing"]) is None


class TestSanitizeFilenameComponent:
    def test_replaces_invalid_chars(self):
        assert sanitize_filename_component('a/b:c\\d?e%f*g|h"i<j>k') == "a_b_c_d_e_f_g_h_i_j_k"

    def test_trims_whitespace(self):
        assert sanitize_filename_component("  Ubuntu Server  ") == "Ubuntu Server"

    def test_empty_falls_back(self):
        assert sanitize_filename_component("   ") == "vm"
        assert sanitize_filename_component("") == "vm"


class TestBackupTimestamp:
    def test_naive(self):
        assert backup_timestamp(datetime(2026, 1, 2, 3, 4, 5)) == "2026-01-02_030405"

    def test_aware_uses_local_time(self, utc_moment):
        assert backup_timestamp(utc_moment) == utc_moment.astimezone().strftime("%Y-%m-%d_%H%M%S")


class TestNaturalSortKey:
    def test_numeric_runs(self):
        names = ["disk10", "Disk2", "disk1"]
        assert sorted(names, key=natural_sort_key) == ["disk1", "Disk2", "disk10"]


class TestFormatBytes:
    def test_units(self):
        assert format_bytes(512) == "512 B"
        assert format_bytes(2048) == "2.0 KiB"
        assert format_bytes(5 * 1024 * 1024) == "5.0 MiB"
        assert format_bytes(3 * 1024**3) == "3.0 GiB"
