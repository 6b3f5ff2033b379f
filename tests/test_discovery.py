"""Tests for vmbackup.discovery module."""

from __future__ import annotations

from vmbackup.discovery import bundles_to_vms, discover_bundles, discover_disks, read_bundle_identity

UUID = "5B8F1C2E-1111-4A4A-9C9C-0123456789AB"


class TestReadBundleIdentity:
    def test_reads_information_block(self, make_bundle):
        bundle = make_bundle("Linux", uuid=UUID)
        assert read_bundle_identity(bundle) == (UUID, "Linux")

    def test_missing_config_uses_bundle_stem(self, make_bundle):
        bundle = make_bundle("Windows 11", with_config=False)
        assert read_bundle_identity(bundle) == ("", "Windows 11")

    def test_corrupt_config_uses_bundle_stem(self, make_bundle):
        bundle = make_bundle("Broken", with_config=False)
        (bundle / "config.plist").write_text("not a plist")
        assert read_bundle_identity(bundle) == ("", "Broken")


class TestDiscoverDisks:
    def test_natural_order_and_filtering(self, make_bundle):
        bundle = make_bundle(
            "Linux",
            disks={"disk10.qcow2": b"", "disk2.qcow2": b"", "efi_vars.fd": b"", ".tmp.qcow2": b""},
        )
        assert [d.name for d in discover_disks(bundle)] == ["disk2.qcow2", "disk10.qcow2"]

    def test_no_data_dir(self, tmp_path):
        assert discover_disks(tmp_path) == []


class TestDiscoverBundles:
    def test_scans_and_sorts(self, make_bundle, tmp_path):
        base = tmp_path / "vms"
        make_bundle("vm10", parent=base)
        make_bundle("vm2", parent=base, uuid=UUID)
        (base / "notes.txt").write_text("x")
        (base / "Fake.utm").write_text("not a dir")
        (base / ".Hidden.utm").mkdir()

        found = discover_bundles([base])

        assert [b.name for b in found] == ["vm2", "vm10"]
        assert found[0].uuid == UUID

    def test_duplicate_and_missing_dirs(self, make_bundle, tmp_path):
        base = tmp_path / "vms"
        make_bundle("Linux", parent=base)
        found = discover_bundles([base, base / ".." / "vms", tmp_path / "missing"])
        assert len(found) == 1


class TestBundlesToVms:
    def test_resolved_vms(self, make_bundle, tmp_path):
        make_bundle("Linux", uuid=UUID, disks={"d.qcow2": b"1"})
        make_bundle("Other")
        vms = bundles_to_vms(discover_bundles([tmp_path / "vms"]))
        linux, other = vms
        assert linux.path_is_resolved
        assert linux.control_identifier == UUID
        assert len(linux.disk_paths) == 1
        assert other.control_identifier is None
        assert linux.id == str(linux.bundle_path)
