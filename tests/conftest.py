"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import json
from typing import Any

import pytest

from nvme_exporter.errors import SourceUnavailable
from nvme_exporter.models import Device, DeviceCapacity, DeviceIdentity
from nvme_exporter.sink import MetricsSink


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (binds sockets)"
    )


SMART_LOG = {
    "critical_warning": 0,
    "temperature": 310,
    "avail_spare": 100,
    "spare_thresh": 10,
    "percent_used": 3,
    "endurance_grp_critical_warning_summary": 0,
    "data_units_read": "12,345,678",
    "data_units_written": "9,876,543",
    "host_read_commands": "123,456,789",
    "host_write_commands": "98,765,432",
    "controller_busy_time": "1,234",
    "power_cycles": "56",
    "power_on_hours": "7,890",
    "unsafe_shutdowns": "12",
    "media_errors": "0",
    "num_err_log_entries": "34",
    "warning_temp_time": 0,
    "critical_comp_time": 0,
    "thm_temp1_trans_count": 1,
    "thm_temp2_trans_count": 2,
    "thm_temp1_total_time": 30,
    "thm_temp2_total_time": 40,
}


def smart_log_blob(**overrides: Any) -> bytes:
    """Build raw ``nvme smart-log -o json`` output."""
    data = dict(SMART_LOG)
    data.update(overrides)
    return json.dumps(data).encode("utf-8")


def make_device(
    path: str = "/dev/nvme0n1",
    model: str = "Samsung SSD 980 PRO 1TB",
    serial: str = "S5GXNX0R123456",
    firmware: str = "5B2QGXA7",
    used_bytes: int = 500_000_000_000,
) -> Device:
    return Device(
        identity=DeviceIdentity(path=path, model=model, serial=serial, firmware=firmware),
        capacity=DeviceCapacity(
            used_bytes=used_bytes,
            maximum_lba=1_953_525_168,
            physical_size=1_000_204_886_016,
            sector_size=512,
        ),
        namespace=1,
    )


class RecordingSink(MetricsSink):
    """In-memory sink that keeps the live series and a log of calls."""

    def __init__(self) -> None:
        self.info: dict[str, set[tuple[str, str, str]]] = {}
        self.gauges: dict[tuple[str, str], float] = {}
        self.counters: dict[str, int] = {}
        self.calls: list[tuple[Any, ...]] = []

    def set_info(self, path, model, serial, firmware):
        self.calls.append(("set_info", path, model, serial, firmware))
        self.info.setdefault(path, set()).add((model, serial, firmware))

    def retract_info(self, path):
        self.calls.append(("retract_info", path))
        self.info.pop(path, None)

    def set_gauge(self, name, path, value):
        self.calls.append(("set_gauge", name, path, value))
        self.gauges[(name, path)] = value

    def retract_gauge(self, name, path):
        self.calls.append(("retract_gauge", name, path))
        self.gauges.pop((name, path), None)

    def increment_counter(self, name):
        self.calls.append(("increment_counter", name))
        self.counters[name] = self.counters.get(name, 0) + 1

    def export(self):
        return b""

    def paths(self) -> set[str]:
        return {path for _, path in self.gauges} | set(self.info)

    def calls_for(self, path: str) -> list[tuple[Any, ...]]:
        return [call for call in self.calls if path in call[1:3]]


class FakeSource:
    """Device source returning canned inventory and telemetry."""

    def __init__(self, devices=None, telemetry=None, list_error=None) -> None:
        self.devices = list(devices or [])
        self.telemetry = dict(telemetry or {})
        self.list_error = list_error
        self.fetched: list[str] = []

    def list_devices(self):
        if self.list_error is not None:
            raise self.list_error
        return list(self.devices)

    def get_telemetry(self, path):
        self.fetched.append(path)
        value = self.telemetry.get(path)
        if value is None:
            raise SourceUnavailable(f"smart-log failed for {path}")
        if isinstance(value, Exception):
            raise value
        return value


@pytest.fixture
def sink():
    return RecordingSink()
