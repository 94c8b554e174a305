"""
Runtime validation of tool arguments against a descriptor's input schema.

The schema is walked directly (no code generation).  Only the JSON-Schema
subset used by tool catalogs is understood:

    type (incl. lists, "null", "integer"), enum, const, anyOf / oneOf,
    nullable, default, properties, required, items, minimum / maximum,
    exclusiveMinimum / exclusiveMaximum, minLength / maxLength,
    minItems / maxItems

Annotation keywords (title, description, format, ...) are ignored and
properties the schema does not mention are passed through untouched.
"""
from __future__ import annotations

import copy
import math
import re
from typing import Any

from .errors import SchemaIssue, ValidationError

Path = tuple[str | int, ...]

_INT_RE = re.compile(r"^[+-]?\d+$")
_MISSING = object()


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def _matches_type(expected: str, value: Any) -> bool:
    if expected == "null":
        return value is None
    if expected == "boolean":
        return isinstance(value, bool)
    if expected == "integer":
        return isinstance(value, int) and not isinstance(value, bool)
    if expected == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)
    if expected == "string":
        return isinstance(value, str)
    if expected == "array":
        return isinstance(value, (list, tuple))
    if expected == "object":
        return isinstance(value, dict)
    return True


def _coerce(expected: str, value: Any) -> Any:
    """Best-effort conversion of ``value`` to ``expected``; returns _MISSING on failure."""
    if expected == "integer":
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str) and _INT_RE.match(value.strip()):
            return int(value.strip())
    elif expected == "number":
        if isinstance(value, str) and value.strip():
            try:
                number = float(value)
            except ValueError:
                return _MISSING
            if math.isfinite(number):
                return int(number) if _INT_RE.match(value.strip()) else number
    elif expected == "boolean":
        if isinstance(value, str) and value.strip().lower() in {"true", "false"}:
            return value.strip().lower() == "true"
    return _MISSING


class CompiledSchema:
    def __init__(self, schema: dict[str, Any] | None) -> None:
        self.schema: dict[str, Any] = schema if isinstance(schema, dict) else {}

    def validate(self, value: Any) -> Any:
        issues: list[SchemaIssue] = []
        result = self._check(self.schema, value, (), issues, coerce=True)
        if issues:
            raise ValidationError(issues)
        return result

    # -- walkers -----------------------------------------------------------

    def _check(
        self,
        schema: Any,
        value: Any,
        path: Path,
        issues: list[SchemaIssue],
        *,
        coerce: bool,
    ) -> Any:
        if not isinstance(schema, dict) or not schema:
            return value
        if value is None and schema.get("nullable") is True:
            return None

        branches = schema.get("anyOf") or schema.get("oneOf")
        if isinstance(branches, list) and branches:
            before = len(issues)
            value = self._check_union(branches, value, path, issues)
            if len(issues) > before:
                return value

        if "const" in schema and value != schema["const"]:
            issues.append(SchemaIssue(path, "invalid_literal", f"Expected {schema['const']!r}"))
            return value

        if "enum" in schema and isinstance(schema["enum"], list):
            if value not in schema["enum"]:
                allowed = " | ".join(repr(option) for option in schema["enum"])
                issues.append(
                    SchemaIssue(path, "invalid_enum_value", f"Expected {allowed}, received {value!r}")
                )
                return value

        expected = schema.get("type")
        if expected is not None:
            value, ok = self._check_type(expected, value, path, issues, coerce=coerce)
            if not ok:
                return value

        if isinstance(value, str):
            self._check_length(schema, len(value), path, issues, "minLength", "maxLength", "character(s)")
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            self._check_bounds(schema, value, path, issues)
        elif isinstance(value, (list, tuple)):
            value = self._check_array(schema, list(value), path, issues, coerce=coerce)
        elif isinstance(value, dict):
            value = self._check_object(schema, value, path, issues, coerce=coerce)
        return value

    def _check_union(
        self,
        branches: list[Any],
        value: Any,
        path: Path,
        issues: list[SchemaIssue],
    ) -> Any:
        # Strict pass first so a branch that accepts the value as-is wins over coercion.
        for coerce in (False, True):
            for branch in branches:
                attempt: list[SchemaIssue] = []
                result = self._check(branch, value, path, attempt, coerce=coerce)
                if not attempt:
                    return result
        received = _type_name(value)
        issues.append(SchemaIssue(path, "invalid_union", f"Value of type {received} matches none of the allowed shapes"))
        return value

    def _check_type(
        self,
        expected: Any,
        value: Any,
        path: Path,
        issues: list[SchemaIssue],
        *,
        coerce: bool,
    ) -> tuple[Any, bool]:
        options = expected if isinstance(expected, list) else [expected]
        if any(_matches_type(option, value) for option in options):
            return value, True
        if coerce:
            for option in options:
                converted = _coerce(option, value)
                if converted is not _MISSING:
                    return converted, True
        wanted = " | ".join(str(option) for option in options)
        if value is None:
            issues.append(SchemaIssue(path, "invalid_type", f"Expected {wanted}, received null"))
        else:
            issues.append(SchemaIssue(path, "invalid_type", f"Expected {wanted}, received {_type_name(value)}"))
        return value, False

    @staticmethod
    def _check_length(
        schema: dict[str, Any],
        size: int,
        path: Path,
        issues: list[SchemaIssue],
        low_key: str,
        high_key: str,
        unit: str,
    ) -> None:
        low = schema.get(low_key)
        high = schema.get(high_key)
        if isinstance(low, int) and size < low:
            issues.append(SchemaIssue(path, "too_small", f"Must contain at least {low} {unit}"))
        if isinstance(high, int) and size > high:
            issues.append(SchemaIssue(path, "too_big", f"Must contain at most {high} {unit}"))

    @staticmethod
    def _check_bounds(schema: dict[str, Any], value: float, path: Path, issues: list[SchemaIssue]) -> None:
        minimum = schema.get("minimum")
        maximum = schema.get("maximum")
        exclusive_min = schema.get("exclusiveMinimum")
        exclusive_max = schema.get("exclusiveMaximum")
        if isinstance(minimum, (int, float)) and value < minimum:
            issues.append(SchemaIssue(path, "too_small", f"Number must be greater than or equal to {minimum}"))
        if isinstance(maximum, (int, float)) and value > maximum:
            issues.append(SchemaIssue(path, "too_big", f"Number must be less than or equal to {maximum}"))
        if isinstance(exclusive_min, (int, float)) and not isinstance(exclusive_min, bool) and value <= exclusive_min:
            issues.append(SchemaIssue(path, "too_small", f"Number must be greater than {exclusive_min}"))
        if isinstance(exclusive_max, (int, float)) and not isinstance(exclusive_max, bool) and value >= exclusive_max:
            issues.append(SchemaIssue(path, "too_big", f"Number must be less than {exclusive_max}"))

    def _check_array(
        self,
        schema: dict[str, Any],
        value: list[Any],
        path: Path,
        issues: list[SchemaIssue],
        *,
        coerce: bool,
    ) -> list[Any]:
        self._check_length(schema, len(value), path, issues, "minItems", "maxItems", "element(s)")
        items = schema.get("items")
        if not isinstance(items, dict):
            return value
        return [
            self._check(items, item, path + (index,), issues, coerce=coerce)
            for index, item in enumerate(value)
        ]

    def _check_object(
        self,
        schema: dict[str, Any],
        value: dict[str, Any],
        path: Path,
        issues: list[SchemaIssue],
        *,
        coerce: bool,
    ) -> dict[str, Any]:
        properties = schema.get("properties")
        if not isinstance(properties, dict):
            properties = {}
        required = schema.get("required")
        required = set(required) if isinstance(required, list) else set()

        result = dict(value)
        for name, sub_schema in properties.items():
            if name not in value:
                if isinstance(sub_schema, dict) and "default" in sub_schema:
                    result[name] = copy.deepcopy(sub_schema["default"])
                elif name in required:
                    issues.append(SchemaIssue(path + (name,), "required", "Required"))
                continue
            result[name] = self._check(sub_schema, value[name], path + (name,), issues, coerce=coerce)
        return result


def compile_schema(schema: dict[str, Any] | None) -> CompiledSchema:
    return CompiledSchema(schema)


def validate(schema: dict[str, Any] | None, raw_args: Any) -> Any:
    """One-shot helper: ``compile_schema(schema).validate(raw_args)``."""
    return compile_schema(schema).validate(raw_args)
