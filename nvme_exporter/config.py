from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
import configparser
import math
import os
import re
from typing import Mapping

from nvme_exporter.errors import ConfigError

ENV_PREFIX = "NVME_EXPORTER_"

DEFAULT_LISTEN_ADDR = ":21405"
DEFAULT_CHECK_INTERVAL = "1m"


@dataclass(frozen=True)
class ExporterConfig:
    listen_addr: str
    check_interval_s: float


@dataclass(frozen=True)
class BackoffConfig:
    initial_interval_s: float
    max_interval_s: float
    multiplier: float
    randomization_factor: float


@dataclass(frozen=True)
class SourceConfig:
    nvme_path: str
    sudo_path: str
    use_sudo: bool


@dataclass(frozen=True)
class MqttConfig:
    enabled: bool
    host: str
    port: int
    base_topic: str
    client_id: str
    username: str | None
    password: str | None
    qos: int
    tls_enabled: bool
    ca_cert: str | None
    keepalive: int


@dataclass(frozen=True)
class AppConfig:
    exporter: ExporterConfig
    backoff: BackoffConfig
    source: SourceConfig
    mqtt: MqttConfig


_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"ms": 1e-3, "s": 1, "m": 60, "h": 3600}


def parse_duration(value: str) -> float:
    """Parse a duration like '90', '30s', '1m', '1h30m' or '500ms' to seconds."""
    text = value.strip()
    if not text:
        raise ConfigError("empty duration")
    try:
        seconds = float(text)
    except ValueError:
        pos = 0
        seconds = 0.0
        for match in _DURATION_PART.finditer(text):
            if match.start() != pos:
                break
            seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
            pos = match.end()
        if pos != len(text):
            raise ConfigError(f"invalid duration: {value!r}") from None
    if not math.isfinite(seconds) or seconds <= 0:
        raise ConfigError(f"duration must be positive: {value!r}")
    return seconds


def parse_listen_addr(value: str) -> tuple[str, int]:
    """Split 'host:port' (host optional, as in ':21405') into a bind address."""
    host, sep, port = value.strip().rpartition(":")
    if not sep:
        raise ConfigError(f"listen address must be host:port, got {value!r}")
    host = host.strip("[]")
    try:
        port_number = int(port)
    except ValueError:
        raise ConfigError(f"invalid port in listen address: {value!r}") from None
    if not 0 <= port_number <= 65535:
        raise ConfigError(f"port out of range in listen address: {value!r}")
    return host or "0.0.0.0", port_number


def _get_optional(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value if value else None


def load_config(
    path: str | Path | None = None, environ: Mapping[str, str] | None = None
) -> AppConfig:
    parser = configparser.ConfigParser()
    if path is not None:
        read_files = parser.read(path)
        if not read_files:
            raise FileNotFoundError(f"Config file not found: {path}")

    try:
        exporter = ExporterConfig(
            listen_addr=parser.get("exporter", "listen_addr", fallback=DEFAULT_LISTEN_ADDR),
            check_interval_s=parse_duration(
                parser.get("exporter", "check_interval", fallback=DEFAULT_CHECK_INTERVAL)
            ),
        )

        backoff = BackoffConfig(
            initial_interval_s=parse_duration(
                parser.get("backoff", "initial_interval", fallback="1s")
            ),
            max_interval_s=parse_duration(
                parser.get("backoff", "max_interval", fallback="10s")
            ),
            multiplier=parser.getfloat("backoff", "multiplier", fallback=1.5),
            randomization_factor=parser.getfloat(
                "backoff", "randomization_factor", fallback=0.5
            ),
        )

        source = SourceConfig(
            nvme_path=parser.get("source", "nvme_path", fallback="nvme"),
            sudo_path=parser.get("source", "sudo_path", fallback="sudo"),
            use_sudo=parser.getboolean("source", "use_sudo", fallback=True),
        )

        # Use parser.get with fallback to handle a missing [mqtt] section
        mqtt = MqttConfig(
            enabled=parser.getboolean("mqtt", "enabled", fallback=False),
            host=parser.get("mqtt", "host", fallback="localhost"),
            port=parser.getint("mqtt", "port", fallback=1883),
            base_topic=parser.get("mqtt", "base_topic", fallback="nvme_exporter").rstrip("/"),
            client_id=parser.get("mqtt", "client_id", fallback="nvme-exporter"),
            username=_get_optional(parser.get("mqtt", "username", fallback=None)),
            password=_get_optional(parser.get("mqtt", "password", fallback=None)),
            qos=parser.getint("mqtt", "qos", fallback=0),
            tls_enabled=parser.getboolean("mqtt", "tls", fallback=False),
            ca_cert=_get_optional(parser.get("mqtt", "ca_cert", fallback=None)),
            keepalive=parser.getint("mqtt", "keepalive", fallback=60),
        )
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc

    exporter = _apply_env_overrides(exporter, os.environ if environ is None else environ)
    parse_listen_addr(exporter.listen_addr)

    if backoff.multiplier < 1:
        raise ConfigError("backoff multiplier must be >= 1")
    if not 0 <= backoff.randomization_factor < 1:
        raise ConfigError("backoff randomization_factor must be in [0, 1)")
    if backoff.max_interval_s < backoff.initial_interval_s:
        raise ConfigError("backoff max_interval must not be below initial_interval")

    return AppConfig(exporter=exporter, backoff=backoff, source=source, mqtt=mqtt)


def _apply_env_overrides(
    exporter: ExporterConfig, environ: Mapping[str, str]
) -> ExporterConfig:
    listen_addr = _get_optional(environ.get(f"{ENV_PREFIX}LISTEN_ADDR"))
    if listen_addr is not None:
        exporter = replace(exporter, listen_addr=listen_addr)
    check_interval = _get_optional(environ.get(f"{ENV_PREFIX}CHECK_INTERVAL"))
    if check_interval is not None:
        exporter = replace(exporter, check_interval_s=parse_duration(check_interval))
    return exporter
