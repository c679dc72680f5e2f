"""Validation of call arguments and encoding of path arguments.

Arguments are validated against a JSON Schema with jsonschema. Invalid
fields are reported as JSONPath strings (e.g. "$.user.id").
"""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

from jsonschema import Draft4Validator, ValidationError

# Left unescaped in path args; "/" is always escaped
_PATH_ARG_SAFE = "-_.!~*'()"


def validate_args(args: dict[str, Any], schema: dict[str, Any]) -> list[str] | None:
    """Validate call arguments against a JSON Schema.

    Args:
        args: The call arguments.
        schema: JSON Schema describing valid arguments.

    Returns:
        JSONPaths of invalid fields, or None when args are valid.

    Raises:
        SchemaError: If the schema itself is invalid.
    """
    Draft4Validator.check_schema(schema)
    validator = Draft4Validator(schema)

    invalid: list[str] = []
    for error in validator.iter_errors(args):
        for path in _error_paths(error):
            if path not in invalid:
                invalid.append(path)

    return invalid or None


def _error_paths(error: ValidationError) -> list[str]:
    """Return the field paths a validation error points at.

    A "required" error points at the object missing the property, so the
    missing property names are appended to that path.
    """
    base = _error_path_to_jsonpath(error.absolute_path)
    if error.validator == "required" and isinstance(error.instance, dict):
        missing = [name for name in error.validator_value if name not in error.instance]
        return [f"{base}.{name}" for name in missing]
    return [base]


def _error_path_to_jsonpath(path) -> str:
    """Convert a jsonschema error path (deque of segments) to JSONPath."""
    if not path:
        return "$"

    parts = ["$"]
    for segment in path:
        if isinstance(segment, int):
            parts.append(f"[{segment}]")
        else:
            parts.append(f".{segment}")

    return "".join(parts)


def encode_path_args(args: dict[str, Any]) -> dict[str, Any]:
    """URL-encode every argument value so it is safe inside a path segment."""
    return {key: quote(str(value), safe=_PATH_ARG_SAFE) for key, value in args.items()}


def get_path_args(
    args: dict[str, Any], has_schema: bool, encode_unvalidated: bool
) -> dict[str, Any]:
    """Arguments handed to a path callable.

    Validated arguments are always encoded. Unvalidated ones are encoded only
    when the service asks for it.
    """
    if has_schema or encode_unvalidated:
        return encode_path_args(args)
    return dict(args)

