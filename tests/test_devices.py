"""Tests for USB device enumeration and validation."""

import os
import subprocess
from unittest.mock import patch

import pytest

from busbcopy.config import settings
from busbcopy.domain.models import MIB, Device
from busbcopy.storage import devices
from busbcopy.storage.exceptions import CommandError, DeviceValidationError


@pytest.fixture
def by_id_dir(tmp_path):
    """A fake /dev/disk/by-id with two USB disks, a partition and a SATA disk."""
    dev = tmp_path / "dev"
    dev.mkdir()
    for name in ("sda", "sdb", "sdb1", "sdc"):
        (dev / name).touch()
    by_id = tmp_path / "by-id"
    by_id.mkdir()
    os.symlink(dev / "sdb", by_id / "usb-Kingston_DataTraveler_001-0:0")
    os.symlink(dev / "sdb1", by_id / "usb-Kingston_DataTraveler_001-0:0-part1")
    os.symlink(dev / "sdc", by_id / "usb-SanDisk_Cruzer_002-0:0")
    # Second identifier for the same disk.
    os.symlink(dev / "sdc", by_id / "usb-SanDisk_Cruzer_002-0:1")
    os.symlink(dev / "sda", by_id / "ata-Samsung_SSD_850")
    return by_id


class TestEnumerateUsbStorage:
    """Tests for enumerate_usb_storage()."""

    def test_resolves_usb_links(self, by_id_dir, tmp_path):
        result = list(devices.enumerate_usb_storage(str(by_id_dir)))
        assert result == [
            os.path.realpath(tmp_path / "dev" / "sdb"),
            os.path.realpath(tmp_path / "dev" / "sdc"),
        ]

    def test_skips_partitions_and_non_usb(self, by_id_dir):
        names = [os.path.basename(p) for p in devices.enumerate_usb_storage(str(by_id_dir))]
        assert "sdb1" not in names
        assert "sda" not in names

    def test_deduplicates_by_resolved_path(self, by_id_dir):
        names = [os.path.basename(p) for p in devices.enumerate_usb_storage(str(by_id_dir))]
        assert names.count("sdc") == 1

    def test_missing_directory_yields_nothing(self, tmp_path):
        assert list(devices.enumerate_usb_storage(str(tmp_path / "missing"))) == []

    def test_empty_directory_yields_nothing(self, tmp_path):
        assert list(devices.enumerate_usb_storage(str(tmp_path))) == []

    def test_uses_configured_directory(self, by_id_dir):
        settings.settings_store.values["by_id_dir"] = str(by_id_dir)
        assert len(list(devices.enumerate_usb_storage())) == 2

    def test_is_lazy(self, by_id_dir):
        iterator = devices.enumerate_usb_storage(str(by_id_dir))
        assert iter(iterator) is iterator


class TestSafetyCutoff:
    """Tests for the size-safety heuristic."""

    @pytest.mark.parametrize(
        "size_mib, expected",
        [
            (0, True),
            (7600, True),
            (10239, True),
            (10240, False),
            (10241, False),
            (476940, False),
        ],
    )
    def test_default_cutoff(self, size_mib, expected):
        assert devices.is_within_safety_cutoff(size_mib * MIB) is expected

    def test_partial_mebibyte_rounds_down(self):
        assert devices.is_within_safety_cutoff(10240 * MIB - 1) is True

    def test_explicit_cutoff(self):
        assert devices.is_within_safety_cutoff(2048 * MIB, safety_cutoff_mib=2048) is False
        assert devices.is_within_safety_cutoff(2047 * MIB, safety_cutoff_mib=2048) is True

    def test_configured_cutoff(self):
        settings.settings_store.values["safety_cutoff_mib"] = 100
        assert devices.is_within_safety_cutoff(200 * MIB) is False


class TestValidateDevice:
    """Tests for validate_device() and require_valid_device()."""

    @patch("busbcopy.storage.devices.get_device_size")
    @patch("busbcopy.storage.devices.is_block_device", return_value=True)
    def test_small_block_device_is_valid(self, mock_is_block, mock_size):
        mock_size.return_value = 8 * 1024 * MIB
        assert devices.validate_device("/dev/sdb") is True

    @patch("busbcopy.storage.devices.get_device_size")
    @patch("busbcopy.storage.devices.is_block_device", return_value=True)
    def test_large_device_is_rejected(self, mock_is_block, mock_size):
        mock_size.return_value = 500 * 1024 * MIB
        assert devices.validate_device("/dev/sda") is False

    @patch("busbcopy.storage.devices.get_device_size")
    @patch("busbcopy.storage.devices.is_block_device", return_value=False)
    def test_non_block_device_is_rejected_without_size_query(self, mock_is_block, mock_size):
        assert devices.validate_device("/tmp/file") is False
        mock_size.assert_not_called()

    @patch("busbcopy.storage.devices.get_device_size", return_value=4 * 1024 * MIB)
    @patch("busbcopy.storage.devices.is_block_device", return_value=True)
    def test_require_valid_device_returns_device(self, mock_is_block, mock_size):
        device = devices.require_valid_device("/dev/sdb")
        assert device == Device(path="/dev/sdb", size_bytes=4 * 1024 * MIB)

    @patch("busbcopy.storage.devices.get_device_size", return_value=20 * 1024 * MIB)
    @patch("busbcopy.storage.devices.is_block_device", return_value=True)
    def test_require_valid_device_raises(self, mock_is_block, mock_size):
        with pytest.raises(DeviceValidationError, match="/dev/sdd"):
            devices.require_valid_device("/dev/sdd")

    def test_is_block_device_false_for_regular_file(self, tmp_path):
        path = tmp_path / "file"
        path.touch()
        assert devices.is_block_device(str(path)) is False

    def test_is_block_device_false_for_missing_path(self, tmp_path):
        assert devices.is_block_device(str(tmp_path / "nope")) is False


class TestGetDeviceSize:
    """Tests for get_device_size()."""

    @patch("busbcopy.storage.devices.run_command")
    def test_parses_blockdev_output(self, mock_run):
        mock_run.return_value = subprocess.CompletedProcess(
            ["blockdev"], 0, stdout="8053063680\n", stderr=""
        )
        assert devices.get_device_size("/dev/sdb") == 8053063680
        mock_run.assert_called_once_with(
            ["blockdev", "--getsize64", "/dev/sdb"], log_output=False
        )


class TestValidatedUsbStorage:
    """Tests for validated_usb_storage()."""

    @patch("busbcopy.storage.devices.get_device_size")
    @patch("busbcopy.storage.devices.is_block_device", return_value=True)
    @patch("busbcopy.storage.devices.enumerate_usb_storage")
    def test_filters_by_size(self, mock_enum, mock_is_block, mock_size):
        mock_enum.return_value = iter(["/dev/sdb", "/dev/sdc", "/dev/sdd"])
        sizes = {
            "/dev/sdb": 8 * 1024 * MIB,
            "/dev/sdc": 2 * 1024 * 1024 * MIB,
            "/dev/sdd": 16 * MIB,
        }
        mock_size.side_effect = sizes.__getitem__

        result = devices.validated_usb_storage()

        assert [d.path for d in result] == ["/dev/sdb", "/dev/sdd"]

    @patch("busbcopy.storage.devices.get_device_size")
    @patch("busbcopy.storage.devices.is_block_device", return_value=True)
    @patch("busbcopy.storage.devices.enumerate_usb_storage")
    def test_vanished_device_is_excluded(self, mock_enum, mock_is_block, mock_size):
        mock_enum.return_value = iter(["/dev/sdb", "/dev/sdc"])

        def size(path):
            if path == "/dev/sdb":
                raise CommandError(["blockdev", "--getsize64", path], 1, "No such device")
            return 8 * 1024 * MIB

        mock_size.side_effect = size

        result = devices.validated_usb_storage()

        assert [d.path for d in result] == ["/dev/sdc"]

    @patch("busbcopy.storage.devices.enumerate_usb_storage", return_value=iter([]))
    def test_no_devices(self, mock_enum):
        assert devices.validated_usb_storage() == []
