"""Normalization of ``nvme smart-log -o json`` output.

nvme-cli reports the small fields (warnings, percentages, thermal
management counters) as JSON integers, but the 128-bit lifetime counters
as decimal strings that may carry thousands separators, e.g.
``"1,234,567"``. Temperature is reported in Kelvin.
"""
from __future__ import annotations

import json
import logging
import math
import re
from typing import Any, Mapping

from nvme_exporter.errors import MalformedTelemetry
from nvme_exporter.logging_utils import TRACE_LEVEL
from nvme_exporter.models import DeviceHealth
from nvme_exporter.schema import SMART_LOG_SCHEMA, validate_document

logger = logging.getLogger(__name__)

KELVIN_OFFSET = 273.15
UINT64_MAX = 2**64 - 1

SMALL_INT_FIELDS = (
    "critical_warning",
    "avail_spare",
    "spare_thresh",
    "percent_used",
    "endurance_grp_critical_warning_summary",
    "warning_temp_time",
    "critical_comp_time",
    "thm_temp1_trans_count",
    "thm_temp2_trans_count",
    "thm_temp1_total_time",
    "thm_temp2_total_time",
)

COUNTER_FIELDS = (
    "data_units_read",
    "data_units_written",
    "host_read_commands",
    "host_write_commands",
    "controller_busy_time",
    "power_cycles",
    "power_on_hours",
    "unsafe_shutdowns",
    "media_errors",
    "num_err_log_entries",
)

_DIGITS = re.compile(r"[0-9]+")


def parse_counter(value: Any) -> int:
    """Parse a lifetime counter, returning 0 for anything unparseable."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value if 0 <= value <= UINT64_MAX else 0
    if not isinstance(value, str):
        return 0
    clean = value.replace(",", "")
    if not _DIGITS.fullmatch(clean):
        return 0
    number = int(clean)
    if number > UINT64_MAX:
        return 0
    return number


def round_half_away_from_zero(value: float) -> int:
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def kelvin_to_celsius(kelvin: float) -> int:
    return round_half_away_from_zero(kelvin - KELVIN_OFFSET)


def normalize_stats(raw: Mapping[str, Any]) -> DeviceHealth:
    """Convert a decoded smart-log document into a :class:`DeviceHealth`.

    Missing and null fields default to zero. The document is assumed to
    have passed schema validation, so small fields are integers.
    """
    values: dict[str, int] = {
        name: int(raw.get(name) or 0) for name in SMALL_INT_FIELDS
    }
    values.update({name: parse_counter(raw.get(name)) for name in COUNTER_FIELDS})
    values["temperature"] = kelvin_to_celsius(int(raw.get("temperature") or 0))
    return DeviceHealth(**values)


def parse_smart_log(data: bytes | str) -> DeviceHealth:
    """Decode and normalize raw smart-log JSON.

    Raises:
        MalformedTelemetry: the blob is not JSON, not an object, or has a
            field of the wrong type.
    """
    try:
        raw = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedTelemetry(f"invalid smart-log JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise MalformedTelemetry(
            f"smart-log JSON must be an object, got {type(raw).__name__}"
        )
    errors = validate_document(SMART_LOG_SCHEMA, raw)
    if errors:
        raise MalformedTelemetry("smart-log JSON failed validation: " + "; ".join(errors))
    health = normalize_stats(raw)
    logger.log(TRACE_LEVEL, "Normalized smart-log: %s", health)
    return health
