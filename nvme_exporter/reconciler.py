"""Per-cycle reconciliation of device state against published metrics.

The reconciler remembers which device paths it has published and the
identity (model, serial, firmware) last seen at each path. Every cycle
it overwrites the gauges of devices it can read, withdraws the info
series of a path whose drive was swapped, and retracts everything for
paths that stopped appearing.
"""
from __future__ import annotations

import logging
from typing import Callable, Iterable, Mapping, Union

from nvme_exporter.errors import MalformedTelemetry, SourceError, SourceUnavailable
from nvme_exporter.models import Device, DeviceHealth
from nvme_exporter.sink import ALL_GAUGES, CAPACITY_GAUGES, HEALTH_GAUGES, MetricsSink
from nvme_exporter.source import DeviceSource
from nvme_exporter.stats import parse_smart_log

TelemetryLookup = Union[Mapping[str, bytes], Callable[[str], bytes]]


class Reconciler:
    def __init__(self, sink: MetricsSink, source: DeviceSource | None = None) -> None:
        self.sink = sink
        self.source = source
        self.logger = logging.getLogger(self.__class__.__name__)
        self._known: dict[str, bool] = {}
        self._last_seen: dict[str, tuple[str, str, str]] = {}

    @property
    def known_devices(self) -> dict[str, bool]:
        return dict(self._known)

    @property
    def last_seen(self) -> dict[str, tuple[str, str, str]]:
        return dict(self._last_seen)

    def run_cycle(self) -> bool:
        """List devices from the source and reconcile them.

        A failed device listing leaves all state untouched.
        """
        if self.source is None:
            raise RuntimeError("Reconciler has no device source")
        try:
            devices = self.source.list_devices()
        except SourceError as exc:
            self.logger.error("Error listing NVMe devices: %s", exc)
            return False
        return self.reconcile_cycle(devices, self.source.get_telemetry)

    def reconcile_cycle(self, devices: Iterable[Device], telemetry: TelemetryLookup) -> bool:
        fetch = _as_fetcher(telemetry)
        has_errors = False

        for device in devices:
            path = device.path
            try:
                health = parse_smart_log(fetch(path))
            except MalformedTelemetry as exc:
                self.logger.error("Error parsing smart-log output for %s: %s", path, exc)
                has_errors = True
                continue
            except SourceError as exc:
                self.logger.error("Error reading smart-log for %s: %s", path, exc)
                has_errors = True
                continue

            self._known[path] = True

            identity = device.identity.key
            previous = self._last_seen.get(path)
            if previous is not None and previous != identity:
                self.logger.info(
                    "Device %s changed identity from %s to %s", path, previous, identity
                )
                self.sink.retract_info(path)
            self._last_seen[path] = identity

            self._publish(device, health)

        for path, present in list(self._known.items()):
            if present:
                self._known[path] = False
                continue
            self.logger.info("Device %s disappeared, retracting its metrics", path)
            del self._known[path]
            self._last_seen.pop(path, None)
            self._retract(path)

        return not has_errors

    def _publish(self, device: Device, health: DeviceHealth) -> None:
        path = device.path
        identity = device.identity
        self.sink.set_info(path, identity.model, identity.serial, identity.firmware)
        for spec in CAPACITY_GAUGES:
            self.sink.set_gauge(spec.name, path, getattr(device.capacity, spec.field))
        for spec in HEALTH_GAUGES:
            self.sink.set_gauge(spec.name, path, getattr(health, spec.field))

    def _retract(self, path: str) -> None:
        self.sink.retract_info(path)
        for spec in ALL_GAUGES:
            self.sink.retract_gauge(spec.name, path)


def _as_fetcher(telemetry: TelemetryLookup) -> Callable[[str], bytes]:
    if not isinstance(telemetry, Mapping):
        return telemetry

    def fetch(path: str) -> bytes:
        try:
            return telemetry[path]
        except KeyError:
            raise SourceUnavailable(f"no telemetry for {path}") from None

    return fetch
