from __future__ import annotations

from functools import lru_cache
from importlib import resources
import json
from typing import Any

from jsonschema import Draft202012Validator

SMART_LOG_SCHEMA = "nvme-smart-log"
LIST_SCHEMA = "nvme-list"


def load_schema(name: str) -> dict[str, Any]:
    schema_path = resources.files("nvme_exporter").joinpath(
        f"schemas/{name}.schema.json"
    )
    return json.loads(schema_path.read_text(encoding="utf-8"))


@lru_cache(maxsize=None)
def get_validator(name: str) -> Draft202012Validator:
    schema = load_schema(name)
    Draft202012Validator.check_schema(schema)
    return Draft202012Validator(schema=schema)


def validate_document(name: str, document: Any) -> list[str]:
    """Return the schema violations of ``document``, empty when it is valid."""
    validator = get_validator(name)
    errors = sorted(validator.iter_errors(document), key=lambda e: [str(p) for p in e.path])
    return [
        f"{'/'.join(str(p) for p in error.path) or '<root>'}: {error.message}"
        for error in errors
    ]
