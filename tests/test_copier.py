"""Tests for vmbackup.copier module."""

from __future__ import annotations

import os

import pytest

from vmbackup.cancellation import CancellationToken
from vmbackup.copier import copy_file_streaming, copy_tree, directory_byte_size
from vmbackup.exceptions import BackupCancelled, CopyFailedError


@pytest.fixture
def source_tree(tmp_path):
    src = tmp_path / "Linux.utm"
    (src / "Data" / "nested").mkdir(parents=True)
    (src / "config.plist").write_bytes(b"p" * 10)
    (src / "Data" / "disk.qcow2").write_bytes(b"d" * 2500)
    (src / "Data" / "nested" / "efi_vars.fd").write_bytes(b"e" * 40)
    (src / ".DS_Store").write_bytes(b"h" * 999)
    (src / ".hidden").mkdir()
    (src / ".hidden" / "file").write_bytes(b"h" * 999)
    return src


class TestDirectoryByteSize:
    def test_counts_visible_regular_files(self, source_tree):
        assert directory_byte_size(source_tree) == 2550

    def test_skips_symlinks(self, source_tree, tmp_path):
        outside = tmp_path / "outside.bin"
        outside.write_bytes(b"o" * 5000)
        os.symlink(outside, source_tree / "link.bin")
        assert directory_byte_size(source_tree) == 2550

    def test_empty_directory(self, tmp_path):
        assert directory_byte_size(tmp_path) == 0


class TestCopyFileStreaming:
    def test_copies_in_chunks(self, tmp_path):
        src = tmp_path / "a.bin"
        src.write_bytes(bytes(range(256)) * 10)
        dst = tmp_path / "out" / "a.bin"
        assert copy_file_streaming(src, dst, CancellationToken(), chunk_size=100) == 2560
        assert dst.read_bytes() == src.read_bytes()

    def test_cancelled_token_stops_copy(self, tmp_path):
        src = tmp_path / "a.bin"
        src.write_bytes(b"x" * 10)
        token = CancellationToken()
        token.cancel()
        with pytest.raises(BackupCancelled):
            copy_file_streaming(src, tmp_path / "b.bin", token)


class TestCopyTree:
    def test_copies_visible_tree(self, source_tree, tmp_path):
        dst = tmp_path / "work" / "Linux.utm"
        copied = copy_tree(source_tree, dst, CancellationToken())
        assert copied == 2550
        assert (dst / "Data" / "disk.qcow2").read_bytes() == b"d" * 2500
        assert (dst / "Data" / "nested" / "efi_vars.fd").exists()
        assert not (dst / ".DS_Store").exists()
        assert not (dst / ".hidden").exists()

    def test_progress_is_cumulative_and_bounded(self, source_tree, tmp_path):
        seen = []
        copy_tree(source_tree, tmp_path / "dst", CancellationToken(), progress=seen.append)
        assert seen[0] == 0
        assert seen == sorted(seen)
        assert seen[-1] == 2550

    def test_progress_clamped_to_stale_total(self, source_tree, tmp_path):
        seen = []
        copy_tree(source_tree, tmp_path / "dst", CancellationToken(), progress=seen.append, total_bytes=100)
        assert max(seen) == 100

    def test_cancel_mid_copy(self, source_tree, tmp_path):
        token = CancellationToken()

        def on_progress(value):
            if value > 0:
                token.cancel()

        with pytest.raises(BackupCancelled):
            copy_tree(source_tree, tmp_path / "dst", token, progress=on_progress)

    def test_missing_source_is_copy_failure(self, tmp_path):
        with pytest.raises(CopyFailedError, match="Copy failed"):
            copy_tree(tmp_path / "missing", tmp_path / "dst", CancellationToken(), total_bytes=0)

    def test_empty_source(self, tmp_path):
        src = tmp_path / "Empty.utm"
        src.mkdir()
        seen = []
        assert copy_tree(src, tmp_path / "dst", CancellationToken(), progress=seen.append) == 0
        assert seen == [0]
        assert (tmp_path / "dst").is_dir()
