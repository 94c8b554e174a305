from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote, unquote_plus

from .catalog import ParameterLocation, ToolDescriptor
from .errors import PathResolutionError
from .files import FILE_FIELDS, FileReference

_log = logging.getLogger(__name__)

# Argument that carries the request body in catalog schemas.
BODY_ARGUMENT = "requestBody"
# Credential slot filled in by the dispatcher; never part of an implicit body.
CREDENTIAL_ARGUMENT = "authorization"

# encodeURIComponent leaves these unescaped as well.
_PATH_SAFE = "!~*'()"


@dataclass
class RequestBody:
    """Body fields in order; values are plain data or FileReference.

    ``raw`` holds a body that is not a field mapping (e.g. a JSON array),
    which is sent unchanged.
    """

    fields: list[tuple[str, Any]] = field(default_factory=list)
    raw: Any = None

    def file_references(self) -> list[FileReference]:
        return [value for _, value in self.fields if isinstance(value, FileReference)]


@dataclass
class RoutedRequest:
    path: str
    query: dict[str, Any] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    body: RequestBody | None = None


def _header_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _tag(name: str, value: Any) -> Any:
    if name in FILE_FIELDS and isinstance(value, str) and value.strip():
        return FileReference(name, value)
    return value


def _split_form(text: str) -> list[tuple[str, Any]]:
    """Split ``key=value&...``; file field values are kept exactly as written."""
    fields: list[tuple[str, Any]] = []
    for piece in text.strip().lstrip("?").split("&"):
        if not piece:
            continue
        raw_name, _, raw_value = piece.partition("=")
        name = unquote_plus(raw_name)
        if name in FILE_FIELDS:
            fields.append((name, _tag(name, raw_value)))
        else:
            fields.append((name, unquote_plus(raw_value)))
    return fields


def parse_body(value: Any) -> RequestBody | None:
    if value is None:
        return None
    if isinstance(value, str):
        return RequestBody(fields=_split_form(value))
    if isinstance(value, dict):
        return RequestBody(fields=[(str(name), _tag(str(name), item)) for name, item in value.items()])
    return RequestBody(raw=value)


def route(descriptor: ToolDescriptor, args: dict[str, Any]) -> RoutedRequest:
    """Split validated arguments into path, query, headers and body."""
    remaining = dict(args)
    path = descriptor.path_template
    query: dict[str, Any] = {}
    headers: dict[str, str] = {}

    for param in descriptor.execution_parameters:
        value = remaining.pop(param.name, None)
        if value is None:
            continue
        if param.location is ParameterLocation.PATH:
            path = path.replace("{" + param.name + "}", quote(_header_value(value), safe=_PATH_SAFE))
        elif param.location is ParameterLocation.QUERY:
            query[param.name] = value
        elif param.location is ParameterLocation.HEADER:
            headers[param.name.lower()] = _header_value(value)

    if "{" in path:
        raise PathResolutionError(f"Failed to resolve path parameters: {path}")

    body = None
    if descriptor.body_content_type is not None:
        if BODY_ARGUMENT in remaining:
            leftover = sorted(k for k in remaining if k != BODY_ARGUMENT)
            if leftover:
                _log.debug("Tool '%s': ignoring non-body arguments %s", descriptor.name, leftover)
            body = parse_body(remaining[BODY_ARGUMENT])
        else:
            fields = {k: v for k, v in remaining.items() if k != CREDENTIAL_ARGUMENT}
            body = parse_body(fields) if fields else None
    return RoutedRequest(path=path, query=query, headers=headers, body=body)
