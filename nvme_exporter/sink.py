"""Metric sinks the reconciler publishes into and retracts from."""
from __future__ import annotations

from dataclasses import dataclass
import logging
import threading

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    GCCollector,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)

DEVICE_LABEL = "device"
INFO_METRIC = "nvme_device_info"
LOOP_RUNS_COUNTER = "loop_runs_total"


@dataclass(frozen=True)
class GaugeSpec:
    field: str
    name: str
    help: str


CAPACITY_GAUGES = (
    GaugeSpec("used_bytes", "nvme_used_bytes", "Number of bytes used on the device"),
    GaugeSpec("maximum_lba", "nvme_maximum_lba", "Maximum Logical Block Address"),
    GaugeSpec("physical_size", "nvme_physical_size", "Physical size of the device in bytes"),
    GaugeSpec("sector_size", "nvme_sector_size", "Sector size in bytes"),
)

HEALTH_GAUGES = (
    GaugeSpec("critical_warning", "nvme_critical_warning",
              "Critical warnings for the state of the controller"),
    GaugeSpec("temperature", "nvme_temperature", "Temperature in degrees celsius"),
    GaugeSpec("avail_spare", "nvme_avail_spare",
              "Normalized percentage of remaining spare capacity available"),
    GaugeSpec("spare_thresh", "nvme_spare_thresh",
              "Async event completion may occur when avail spare < threshold"),
    GaugeSpec("percent_used", "nvme_percent_used",
              "Vendor specific estimate of the percentage of life used"),
    GaugeSpec("endurance_grp_critical_warning_summary",
              "nvme_endurance_grp_critical_warning_summary",
              "Critical warnings for the state of endurance groups"),
    GaugeSpec("data_units_read", "nvme_data_units_read",
              "Number of 512 byte data units host has read"),
    GaugeSpec("data_units_written", "nvme_data_units_written",
              "Number of 512 byte data units the host has written"),
    GaugeSpec("host_read_commands", "nvme_host_read_commands",
              "Number of read commands completed"),
    GaugeSpec("host_write_commands", "nvme_host_write_commands",
              "Number of write commands completed"),
    GaugeSpec("controller_busy_time", "nvme_controller_busy_time",
              "Amount of time in minutes controller busy with IO commands"),
    GaugeSpec("power_cycles", "nvme_power_cycles", "Number of power cycles"),
    GaugeSpec("power_on_hours", "nvme_power_on_hours", "Number of power on hours"),
    GaugeSpec("unsafe_shutdowns", "nvme_unsafe_shutdowns", "Number of unsafe shutdowns"),
    GaugeSpec("media_errors", "nvme_media_errors",
              "Number of unrecovered data integrity errors"),
    GaugeSpec("num_err_log_entries", "nvme_num_err_log_entries",
              "Lifetime number of error log entries"),
    GaugeSpec("warning_temp_time", "nvme_warning_temp_time",
              "Amount of time in minutes temperature > warning threshold"),
    GaugeSpec("critical_comp_time", "nvme_critical_comp_time",
              "Amount of time in minutes temperature > critical threshold"),
    GaugeSpec("thm_temp1_trans_count", "nvme_thm_temp1_trans_count",
              "Number of times controller transitioned to lower power"),
    GaugeSpec("thm_temp2_trans_count", "nvme_thm_temp2_trans_count",
              "Number of times controller transitioned to lower power"),
    GaugeSpec("thm_temp1_total_time", "nvme_thm_temp1_trans_time",
              "Total number of seconds controller transitioned to lower power"),
    GaugeSpec("thm_temp2_total_time", "nvme_thm_temp2_trans_time",
              "Total number of seconds controller transitioned to lower power"),
)

ALL_GAUGES = CAPACITY_GAUGES + HEALTH_GAUGES

COUNTERS = {
    LOOP_RUNS_COUNTER: "Total number of main loop runs",
}


class MetricsSink:
    """Gauge and counter registry written by the reconciler.

    Implementations must be safe to call from the poll thread while the
    exposition endpoint exports from other threads.
    """

    def set_info(self, path: str, model: str, serial: str, firmware: str) -> None:
        raise NotImplementedError

    def retract_info(self, path: str) -> None:
        """Remove every info series for ``path`` whatever its identity labels."""
        raise NotImplementedError

    def set_gauge(self, name: str, path: str, value: float) -> None:
        raise NotImplementedError

    def retract_gauge(self, name: str, path: str) -> None:
        raise NotImplementedError

    def increment_counter(self, name: str) -> None:
        raise NotImplementedError

    def export(self) -> bytes:
        raise NotImplementedError


class PrometheusSink(MetricsSink):
    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()
        ProcessCollector(registry=self.registry)
        PlatformCollector(registry=self.registry)
        GCCollector(registry=self.registry)
        self.logger = logging.getLogger(self.__class__.__name__)
        self._info = Gauge(
            INFO_METRIC,
            "Model, serial number and firmware of the device",
            [DEVICE_LABEL, "model", "serial", "firmware"],
            registry=self.registry,
        )
        self._gauges = {
            spec.name: Gauge(spec.name, spec.help, [DEVICE_LABEL], registry=self.registry)
            for spec in ALL_GAUGES
        }
        # prometheus_client appends the _total suffix itself
        self._counters = {
            name: Counter(name.removesuffix("_total"), help_text, registry=self.registry)
            for name, help_text in COUNTERS.items()
        }
        self._info_labels: dict[str, set[tuple[str, str, str]]] = {}
        self._lock = threading.Lock()

    def set_info(self, path: str, model: str, serial: str, firmware: str) -> None:
        with self._lock:
            self._info.labels(path, model, serial, firmware).set(1)
            self._info_labels.setdefault(path, set()).add((model, serial, firmware))

    def retract_info(self, path: str) -> None:
        with self._lock:
            for model, serial, firmware in self._info_labels.pop(path, set()):
                try:
                    self._info.remove(path, model, serial, firmware)
                except KeyError:
                    continue

    def set_gauge(self, name: str, path: str, value: float) -> None:
        self._gauge(name).labels(path).set(value)

    def retract_gauge(self, name: str, path: str) -> None:
        try:
            self._gauge(name).remove(path)
        except KeyError:
            self.logger.debug("No %s series for %s to retract.", name, path)

    def increment_counter(self, name: str) -> None:
        try:
            counter = self._counters[name]
        except KeyError:
            raise KeyError(f"unknown counter: {name}") from None
        counter.inc()

    def export(self) -> bytes:
        return generate_latest(self.registry)

    def _gauge(self, name: str) -> Gauge:
        try:
            return self._gauges[name]
        except KeyError:
            raise KeyError(f"unknown gauge: {name}") from None


class MultiSink(MetricsSink):
    """Fans every write out to several sinks; exports from the first."""

    def __init__(self, *sinks: MetricsSink) -> None:
        if not sinks:
            raise ValueError("MultiSink needs at least one sink")
        self.sinks = sinks

    def set_info(self, path: str, model: str, serial: str, firmware: str) -> None:
        for sink in self.sinks:
            sink.set_info(path, model, serial, firmware)

    def retract_info(self, path: str) -> None:
        for sink in self.sinks:
            sink.retract_info(path)

    def set_gauge(self, name: str, path: str, value: float) -> None:
        for sink in self.sinks:
            sink.set_gauge(name, path, value)

    def retract_gauge(self, name: str, path: str) -> None:
        for sink in self.sinks:
            sink.retract_gauge(name, path)

    def increment_counter(self, name: str) -> None:
        for sink in self.sinks:
            sink.increment_counter(name)

    def export(self) -> bytes:
        return self.sinks[0].export()
