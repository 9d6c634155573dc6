from __future__ import annotations


class NvmeExporterError(Exception):
    """Base class for all exporter errors."""


class ConfigError(NvmeExporterError):
    """Raised when a configuration value cannot be interpreted."""


class SourceError(NvmeExporterError):
    """The device list or a per-device telemetry query failed."""


SourceUnavailable = SourceError


class MalformedTelemetry(SourceError):
    """A raw telemetry document could not be parsed into the expected shape."""
