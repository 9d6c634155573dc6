from __future__ import annotations

import json
import logging
import subprocess
from typing import Any

from nvme_exporter.config import SourceConfig
from nvme_exporter.errors import MalformedTelemetry, SourceUnavailable
from nvme_exporter.logging_utils import TRACE_LEVEL
from nvme_exporter.models import Device, DeviceCapacity, DeviceIdentity
from nvme_exporter.schema import LIST_SCHEMA, validate_document


class DeviceSource:
    """Yields the device inventory and raw per-device telemetry."""

    def list_devices(self) -> list[Device]:
        raise NotImplementedError

    def get_telemetry(self, path: str) -> bytes:
        raise NotImplementedError


def parse_device_list(data: bytes | str) -> list[Device]:
    """Parse ``nvme list -o json`` output, preserving the reported order."""
    try:
        raw = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedTelemetry(f"invalid nvme list JSON: {exc}") from exc
    errors = validate_document(LIST_SCHEMA, raw)
    if errors:
        raise MalformedTelemetry("nvme list JSON failed validation: " + "; ".join(errors))
    return [_device_from_entry(entry) for entry in raw.get("Devices", [])]


def _device_from_entry(entry: dict[str, Any]) -> Device:
    identity = DeviceIdentity(
        path=entry["DevicePath"],
        model=entry.get("ModelNumber", "").strip(),
        serial=entry.get("SerialNumber", "").strip(),
        firmware=entry.get("Firmware", "").strip(),
    )
    capacity = DeviceCapacity(
        used_bytes=entry.get("UsedBytes", 0),
        maximum_lba=entry.get("MaximumLBA", 0),
        physical_size=entry.get("PhysicalSize", 0),
        sector_size=entry.get("SectorSize", 0),
    )
    return Device(identity=identity, capacity=capacity, namespace=entry.get("NameSpace", 0))


class NvmeCliSource(DeviceSource):
    """Device source backed by the nvme-cli JSON output."""

    def __init__(self, config: SourceConfig) -> None:
        self.config = config
        self.logger = logging.getLogger(self.__class__.__name__)

    def _command(self, *args: str) -> list[str]:
        command = [self.config.nvme_path, *args, "-o", "json"]
        if self.config.use_sudo:
            command.insert(0, self.config.sudo_path)
        return command

    def list_devices(self) -> list[Device]:
        output = self._run_command(self._command("list"))
        devices = parse_device_list(output)
        self.logger.debug("nvme list reported %d device(s).", len(devices))
        return devices

    def get_telemetry(self, path: str) -> bytes:
        return self._run_command(self._command("smart-log", path))

    def _run_command(self, command: list[str]) -> bytes:
        try:
            result = subprocess.run(
                command,
                check=False,
                capture_output=True,
            )
        except FileNotFoundError as exc:
            raise SourceUnavailable(f"command not found: {command[0]}") from exc
        except OSError as exc:
            raise SourceUnavailable(f"failed to run {' '.join(command)}: {exc}") from exc
        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            if stderr:
                self.logger.log(TRACE_LEVEL, "stderr: %s", stderr)
            raise SourceUnavailable(
                f"command failed ({result.returncode}): {' '.join(command)}"
                + (f": {stderr}" if stderr else "")
            )
        if not result.stdout.strip():
            raise SourceUnavailable(f"command produced no output: {' '.join(command)}")
        self.logger.log(TRACE_LEVEL, "stdout: %s", result.stdout.strip())
        return result.stdout
