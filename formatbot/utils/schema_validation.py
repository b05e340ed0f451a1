""" 
Schema Validation Utilities
===========================
JSON Schema loading and validation helpers.
"""

from __future__ import annotations

import json
from functools import lru_cache
from importlib import resources
from typing import Any, Dict

from jsonschema import Draft202012Validator, FormatChecker
from jsonschema.exceptions import ValidationError


@lru_cache(maxsize=8)
def _load_schema(schema_filename: str) -> Dict[str, Any]:
    """Load a schema JSON file from formatbot/schemas.

    Args:
        schema_filename: File name under formatbot/schemas (for example 'run_report.schema.json').

    Raises:
        FileNotFoundError: When schema file is missing.
        ValueError: When schema file is not valid JSON or not a JSON object.
    """
    if "/" in schema_filename or "\\" in schema_filename or ".." in schema_filename:
        raise ValueError(f"Schema path escapes schemas directory: {schema_filename}")

    schema_file = resources.files("formatbot.schemas").joinpath(schema_filename)
    if not schema_file.is_file():
        raise FileNotFoundError(f"Schema not found: {schema_filename}")

    try:
        schema = json.loads(schema_file.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ValueError(f"Failed to load schema {schema_filename}: {e}")

    if not isinstance(schema, dict):
        raise ValueError(f"Schema {schema_filename} must be a JSON object")
    return schema


def validate_against_schema(payload: Any, schema_filename: str) -> None:
    """Validate payload against a JSON Schema.

    Args:
        payload: Any JSON-serializable object.
        schema_filename: File name under formatbot/schemas.

    Raises:
        ValueError: When payload fails validation.
    """
    schema = _load_schema(schema_filename)
    validator = Draft202012Validator(schema, format_checker=FormatChecker())

    errors = sorted(validator.iter_errors(payload), key=lambda e: list(e.path))
    if not errors:
        return

    error: ValidationError = errors[0]
    path = "/".join(str(p) for p in error.path)
    prefix = f"Validation failed at '{path}': " if path else "Validation failed: "
    raise ValueError(prefix + error.message)


def validate_run_report(payload: Dict[str, Any]) -> None:
    """Validate a pipeline run report (PipelineRun.to_payload())."""
    validate_against_schema(payload, "run_report.schema.json")

