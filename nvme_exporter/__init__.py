"""Prometheus exporter for NVMe smart-log health telemetry."""

APP_NAME = "nvme_exporter"

from nvme_exporter.config import AppConfig, load_config  # noqa: E402
from nvme_exporter.reconciler import Reconciler  # noqa: E402
from nvme_exporter.scheduler import ExponentialBackoff, PollScheduler  # noqa: E402
from nvme_exporter.sink import MetricsSink, PrometheusSink  # noqa: E402
from nvme_exporter.stats import parse_smart_log  # noqa: E402

__all__ = [
    "APP_NAME",
    "AppConfig",
    "ExponentialBackoff",
    "MetricsSink",
    "PollScheduler",
    "PrometheusSink",
    "Reconciler",
    "load_config",
    "parse_smart_log",
]
