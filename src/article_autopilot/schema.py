"""Helpers to load and validate the JSON schemas shipped with the package."""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from jsonschema import Draft202012Validator, FormatChecker
from jsonschema.exceptions import ValidationError

TOPIC_SCHEMA = "topic_decision.json"
ARTICLE_TOOL_SCHEMA = "article_tool.json"
ARTICLE_RECORD_SCHEMA = "article_record.json"


def schemas_dir() -> Path:
    """Return the directory holding the bundled schema files."""
    return Path(__file__).resolve().parent / "schemas"


@lru_cache(maxsize=8)
def load_schema(name: str) -> Dict[str, Any]:
    """Load and cache a bundled schema by file name."""
    return json.loads((schemas_dir() / name).read_text(encoding="utf-8"))


def tool_parameters(name: str = ARTICLE_TOOL_SCHEMA) -> Dict[str, Any]:
    """
    Return a schema shaped for a function-tool ``parameters`` field.

    Gateways reject the draft metadata keys, so ``$schema`` and ``title`` are dropped.
    """
    schema = dict(load_schema(name))
    schema.pop("$schema", None)
    schema.pop("title", None)
    return schema


def format_errors(errors: Iterable[ValidationError]) -> str:
    """Turn jsonschema errors into a concise human-readable string."""
    parts = []
    for err in errors:
        location = ".".join(str(piece) for piece in err.absolute_path) or "<root>"
        parts.append(f"{location}: {err.message}")
    return "; ".join(parts)


def validate_payload(
    payload: Any, name: str, schema: Optional[Dict[str, Any]] = None
) -> Any:
    """
    Validate a payload against a bundled schema.

    Raises ValueError with a readable message if validation fails.
    """
    schema_dict = schema or load_schema(name)
    validator = Draft202012Validator(schema_dict, format_checker=FormatChecker())
    errors = sorted(validator.iter_errors(payload), key=lambda e: [str(p) for p in e.absolute_path])
    if errors:
        raise ValueError(f"Schema validation failed: {format_errors(errors)}")
    return payload
