"""JSON-schema validation for lockfile documents."""

from __future__ import annotations

import json
from importlib import resources
from pathlib import Path
from typing import Any

from jsonschema import Draft202012Validator

__all__ = ["SCHEMA_RESOURCE", "load_schema", "validate_document"]

#: Schema file bundled with the package
SCHEMA_RESOURCE = "lockfile.schema.json"


def load_schema(schema_path: Path | None = None) -> dict[str, Any]:
    """Load the lockfile schema.

    Args:
        schema_path: Optional override; the bundled schema is used when omitted.
    """

    if schema_path is not None:
        text = schema_path.read_text(encoding="utf-8")
    else:
        text = (
            resources.files("bundle_registry.lockfile")
            .joinpath(SCHEMA_RESOURCE)
            .read_text(encoding="utf-8")
        )
    schema: dict[str, Any] = json.loads(text)
    return schema


def validate_document(document: Any, schema: dict[str, Any]) -> list[str]:
    """Validate a parsed document and return human-readable error strings."""

    validator = Draft202012Validator(schema)
    errors = sorted(validator.iter_errors(document), key=lambda err: list(err.path))
    messages = []
    for error in errors:
        location = "/".join(str(part) for part in error.path)
        messages.append(f"{location or '<root>'}: {error.message}")
    return messages
