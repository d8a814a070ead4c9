"""JSON Schema validation helpers for on-disk documents.

Wraps jsonschema Draft7 validation so the descriptor and lockfile readers can
report the first offending path in a readable message.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from jsonschema import Draft7Validator

DESCRIPTOR_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["name", "version"],
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "version": {"type": "string", "minLength": 1},
        "dependencies": {
            "type": "object",
            "additionalProperties": {"type": "string"},
        },
    },
}

LOCATION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["kind"],
    "properties": {
        "kind": {"enum": ["path", "git", "index", "api"]},
        "path": {"type": "string"},
        "uri": {"type": "string"},
        "ref": {"type": ["string", "null"]},
        "revision": {"type": ["string", "null"]},
        "endpoint": {"type": "string"},
    },
}

LOCKFILE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["version", "manifest_digest", "entries"],
    "properties": {
        "version": {"type": "integer"},
        "manifest_digest": {"type": "string"},
        "entries": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name", "locked_version", "origin"],
                "properties": {
                    "name": {"type": "string", "minLength": 1},
                    "locked_version": {"type": "string", "minLength": 1},
                    "origin": LOCATION_SCHEMA,
                },
            },
        },
    },
}


def first_error(schema: Dict[str, Any], data: Any) -> Optional[str]:
    """Return a message for the first validation problem, or None when valid.

    Args:
        schema: Draft-07 JSON Schema dict.
        data:   Payload to validate.
    """
    validator = Draft7Validator(schema)
    errs = sorted(validator.iter_errors(data), key=lambda e: [str(p) for p in e.path])
    if not errs:
        return None
    first = errs[0]
    path = "/".join([str(p) for p in first.path])
    return f"Invalid value at '{path}': {first.message}"
