"""Tests for the nvme-cli device source."""
from __future__ import annotations

import json
from unittest.mock import Mock, patch

import pytest

from nvme_exporter.config import SourceConfig
from nvme_exporter.errors import MalformedTelemetry, SourceError, SourceUnavailable
from nvme_exporter.source import NvmeCliSource, parse_device_list

NVME_LIST_OUTPUT = json.dumps(
    {
        "Devices": [
            {
                "NameSpace": 1,
                "DevicePath": "/dev/nvme0n1",
                "Firmware": "5B2QGXA7",
                "Index": 0,
                "ModelNumber": "Samsung SSD 980 PRO 1TB                 ",
                "ProductName": "Non-Volatile memory controller",
                "SerialNumber": "S5GXNX0R123456      ",
                "UsedBytes": 512110190592,
                "MaximumLBA": 1953525168,
                "PhysicalSize": 1000204886016,
                "SectorSize": 512,
            },
            {
                "NameSpace": 1,
                "DevicePath": "/dev/nvme1n1",
                "Firmware": "731120WD",
                "ModelNumber": "WD_BLACK SN850X 2000GB",
                "SerialNumber": "22371X800123",
                "UsedBytes": 0,
                "MaximumLBA": 3907029168,
                "PhysicalSize": 2000398934016,
                "SectorSize": 512,
            },
        ]
    }
).encode("utf-8")


@pytest.fixture
def source_config():
    return SourceConfig(nvme_path="nvme", sudo_path="sudo", use_sudo=True)


@pytest.fixture
def source(source_config):
    return NvmeCliSource(source_config)


def completed(stdout=b"", returncode=0, stderr=b""):
    return Mock(stdout=stdout, stderr=stderr, returncode=returncode)


class TestParseDeviceList:
    """Tests for parsing nvme list output."""

    def test_parses_devices_in_order(self):
        devices = parse_device_list(NVME_LIST_OUTPUT)

        assert [d.path for d in devices] == ["/dev/nvme0n1", "/dev/nvme1n1"]
        first = devices[0]
        assert first.identity.model == "Samsung SSD 980 PRO 1TB"
        assert first.identity.serial == "S5GXNX0R123456"
        assert first.identity.firmware == "5B2QGXA7"
        assert first.capacity.used_bytes == 512110190592
        assert first.capacity.maximum_lba == 1953525168
        assert first.capacity.physical_size == 1000204886016
        assert first.capacity.sector_size == 512
        assert first.namespace == 1

    def test_empty_inventory(self):
        assert parse_device_list(b'{"Devices": []}') == []
        assert parse_device_list(b"{}") == []

    def test_missing_optional_fields(self):
        devices = parse_device_list(b'{"Devices": [{"DevicePath": "/dev/nvme0n1"}]}')
        assert devices[0].identity.model == ""
        assert devices[0].capacity.used_bytes == 0

    def test_invalid_json(self):
        with pytest.raises(MalformedTelemetry):
            parse_device_list(b"nope")

    def test_missing_device_path(self):
        with pytest.raises(MalformedTelemetry, match="DevicePath"):
            parse_device_list(b'{"Devices": [{"ModelNumber": "x"}]}')

    def test_wrong_typed_capacity(self):
        with pytest.raises(MalformedTelemetry, match="UsedBytes"):
            parse_device_list(b'{"Devices": [{"DevicePath": "/dev/nvme0n1", "UsedBytes": "1"}]}')


class TestNvmeCliSource:
    """Tests for command execution."""

    @patch("nvme_exporter.source.subprocess.run")
    def test_list_devices_command(self, mock_run, source):
        mock_run.return_value = completed(NVME_LIST_OUTPUT)

        devices = source.list_devices()

        assert len(devices) == 2
        assert mock_run.call_args[0][0] == ["sudo", "nvme", "list", "-o", "json"]

    @patch("nvme_exporter.source.subprocess.run")
    def test_smart_log_command(self, mock_run, source):
        mock_run.return_value = completed(b'{"temperature": 300}')

        assert source.get_telemetry("/dev/nvme0n1") == b'{"temperature": 300}'
        assert mock_run.call_args[0][0] == [
            "sudo", "nvme", "smart-log", "/dev/nvme0n1", "-o", "json",
        ]

    @patch("nvme_exporter.source.subprocess.run")
    def test_without_sudo(self, mock_run):
        source = NvmeCliSource(
            SourceConfig(nvme_path="/usr/sbin/nvme", sudo_path="sudo", use_sudo=False)
        )
        mock_run.return_value = completed(b"{}")

        source.get_telemetry("/dev/nvme0n1")

        assert mock_run.call_args[0][0][0] == "/usr/sbin/nvme"

    @patch("nvme_exporter.source.subprocess.run")
    def test_nonzero_exit(self, mock_run, source):
        mock_run.return_value = completed(returncode=1, stderr=b"permission denied")

        with pytest.raises(SourceUnavailable, match="permission denied"):
            source.get_telemetry("/dev/nvme0n1")

    @patch("nvme_exporter.source.subprocess.run")
    def test_empty_output(self, mock_run, source):
        mock_run.return_value = completed(b"  \n")

        with pytest.raises(SourceUnavailable, match="no output"):
            source.list_devices()

    @patch("nvme_exporter.source.subprocess.run", side_effect=FileNotFoundError)
    def test_missing_binary(self, mock_run, source):
        with pytest.raises(SourceUnavailable, match="command not found"):
            source.list_devices()

    @patch("nvme_exporter.source.subprocess.run")
    def test_malformed_list_is_source_error(self, mock_run, source):
        mock_run.return_value = completed(b"[]")

        with pytest.raises(SourceError):
            source.list_devices()

    @patch("nvme_exporter.source.subprocess.run")
    def test_does_not_use_shell(self, mock_run, source):
        mock_run.return_value = completed(b"{}")

        source.get_telemetry("/dev/nvme0n1; rm -rf /")

        assert "shell" not in mock_run.call_args.kwargs
        assert isinstance(mock_run.call_args[0][0], list)


def test_source_error_aliases():
    assert SourceUnavailable is SourceError
    assert issubclass(MalformedTelemetry, SourceError)
