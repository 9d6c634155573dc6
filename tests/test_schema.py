"""Tests for the bundled JSON schemas."""
from __future__ import annotations

import pytest
from jsonschema import Draft202012Validator

from nvme_exporter.schema import (
    LIST_SCHEMA,
    SMART_LOG_SCHEMA,
    get_validator,
    load_schema,
    validate_document,
)

from conftest import SMART_LOG


@pytest.mark.parametrize("name", [SMART_LOG_SCHEMA, LIST_SCHEMA])
def test_schemas_are_valid(name):
    Draft202012Validator.check_schema(load_schema(name))
    assert get_validator(name) is get_validator(name)


def test_smart_log_fixture_is_valid():
    assert validate_document(SMART_LOG_SCHEMA, SMART_LOG) == []


def test_errors_name_the_offending_path():
    errors = validate_document(
        LIST_SCHEMA, {"Devices": [{"DevicePath": ""}, {"DevicePath": "/dev/nvme1n1", "SectorSize": -1}]}
    )
    assert len(errors) == 2
    assert errors[0].startswith("Devices/0/DevicePath:")
    assert errors[1].startswith("Devices/1/SectorSize:")


def test_root_error():
    assert validate_document(SMART_LOG_SCHEMA, []) == ["<root>: [] is not of type 'object'"]
