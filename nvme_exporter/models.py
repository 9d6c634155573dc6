from __future__ import annotations

from dataclasses import dataclass, fields


@dataclass(frozen=True)
class DeviceIdentity:
    path: str
    model: str
    serial: str
    firmware: str

    @property
    def key(self) -> tuple[str, str, str]:
        """The (model, serial, firmware) tuple used to detect drive swaps."""
        return (self.model, self.serial, self.firmware)


@dataclass(frozen=True)
class DeviceCapacity:
    used_bytes: int = 0
    maximum_lba: int = 0
    physical_size: int = 0
    sector_size: int = 0


@dataclass(frozen=True)
class Device:
    identity: DeviceIdentity
    capacity: DeviceCapacity
    namespace: int = 0

    @property
    def path(self) -> str:
        return self.identity.path


@dataclass(frozen=True)
class DeviceHealth:
    """Normalized smart-log values for one device.

    Temperature is in degrees Celsius. Every other field is reported as
    the drive counts it.
    """

    critical_warning: int = 0
    temperature: int = 0
    avail_spare: int = 0
    spare_thresh: int = 0
    percent_used: int = 0
    endurance_grp_critical_warning_summary: int = 0
    data_units_read: int = 0
    data_units_written: int = 0
    host_read_commands: int = 0
    host_write_commands: int = 0
    controller_busy_time: int = 0
    power_cycles: int = 0
    power_on_hours: int = 0
    unsafe_shutdowns: int = 0
    media_errors: int = 0
    num_err_log_entries: int = 0
    warning_temp_time: int = 0
    critical_comp_time: int = 0
    thm_temp1_trans_count: int = 0
    thm_temp2_trans_count: int = 0
    thm_temp1_total_time: int = 0
    thm_temp2_total_time: int = 0

    def items(self) -> list[tuple[str, int]]:
        return [(f.name, getattr(self, f.name)) for f in fields(self)]
