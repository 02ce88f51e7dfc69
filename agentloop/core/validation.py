"""Typed validation of tool arguments against a tool's parameter schema.

Only a closed set of kinds is understood: string, number, integer, boolean,
array and object, plus ``required``, ``enum`` and string ``pattern``. This is
not a general JSON-schema engine.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

_KIND_NAMES = {
    "string": "a string",
    "number": "a number",
    "integer": "an integer",
    "boolean": "a boolean",
    "array": "an array",
    "object": "an object",
}


@dataclass
class ValidationResult:
    errors: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    @property
    def message(self) -> str:
        return "; ".join(self.errors)


def _matches_kind(value: Any, kind: str) -> bool:
    if kind == "string":
        return isinstance(value, str)
    if kind == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if kind == "integer":
        return isinstance(value, int) and not isinstance(value, bool)
    if kind == "boolean":
        return isinstance(value, bool)
    if kind == "array":
        return isinstance(value, (list, tuple))
    if kind == "object":
        return isinstance(value, dict)
    # Unknown kinds are not enforced
    return True


def _check_value(value: Any, schema: Dict[str, Any], path: str, errors: List[str]) -> None:
    kind = schema.get("type")
    if isinstance(kind, str) and not _matches_kind(value, kind):
        errors.append(f"'{path}' must be {_KIND_NAMES.get(kind, kind)}, got {type(value).__name__}")
        return

    enum = schema.get("enum")
    if enum is not None and value not in enum:
        allowed = ", ".join(repr(v) for v in enum)
        errors.append(f"'{path}' must be one of {allowed}")
        return

    if kind == "string" and schema.get("pattern"):
        if not re.search(schema["pattern"], value):
            errors.append(f"'{path}' does not match the allowed pattern")
        return

    if kind == "array" and isinstance(schema.get("items"), dict):
        for index, item in enumerate(value):
            _check_value(item, schema["items"], f"{path}[{index}]", errors)
        return

    if kind == "object" and isinstance(schema.get("properties"), dict):
        _check_object(value, schema, path, errors)


def _check_object(value: Dict[str, Any], schema: Dict[str, Any], prefix: str, errors: List[str]) -> None:
    properties = schema.get("properties") or {}
    for name in schema.get("required") or []:
        if value.get(name) is None:
            errors.append(f"missing required argument '{_join(prefix, name)}'")
    for name, prop_schema in properties.items():
        if name in value and value[name] is not None and isinstance(prop_schema, dict):
            _check_value(value[name], prop_schema, _join(prefix, name), errors)


def _join(prefix: str, name: str) -> str:
    return f"{prefix}.{name}" if prefix else name


def validate_arguments(arguments: Optional[Dict[str, Any]], schema: Optional[Dict[str, Any]]) -> ValidationResult:
    """Validate a tool call's arguments against its declared parameter schema."""
    result = ValidationResult()
    if arguments is None:
        arguments = {}
    if not isinstance(arguments, dict):
        result.errors.append("arguments must be an object")
        return result
    if not schema:
        return result
    _check_object(arguments, schema, "", result.errors)
    return result
