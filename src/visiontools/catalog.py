from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator

import yaml

from .errors import CatalogError

_log = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent / "catalog.yaml"

FILE_NOTICE = (
    "Note: Any files passed to image, pdf, or video parameters must be absolute paths or uris, "
    "no relative paths. Here is what this tool does: "
)

_PATH_TOKEN_RE = re.compile(r"\{([^{}]+)\}")


class ParameterLocation(str, enum.Enum):
    PATH = "path"
    QUERY = "query"
    HEADER = "header"


class BodyContentType(str, enum.Enum):
    JSON = "application/json"
    MULTIPART = "multipart/form-data"
    URLENCODED = "application/x-www-form-urlencoded"


@dataclass(frozen=True)
class ExecutionParameter:
    name: str
    location: ParameterLocation


@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    description: str
    input_schema: dict[str, Any]
    method: str
    path_template: str
    execution_parameters: tuple[ExecutionParameter, ...] = ()
    body_content_type: BodyContentType | None = None
    security_requirements: tuple[Any, ...] = field(default_factory=tuple)

    def path_tokens(self) -> list[str]:
        return _PATH_TOKEN_RE.findall(self.path_template)

    def as_mcp_tool(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": FILE_NOTICE + self.description,
            "inputSchema": self.input_schema,
        }


class Catalog:
    def __init__(self, descriptors: list[ToolDescriptor] | tuple[ToolDescriptor, ...] = ()) -> None:
        self._tools: dict[str, ToolDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.name in self._tools:
                raise CatalogError(f"Duplicate tool name in catalog: {descriptor.name}")
            self._tools[descriptor.name] = descriptor

    def __iter__(self) -> Iterator[ToolDescriptor]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def get(self, name: str) -> ToolDescriptor | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def list_tools(self) -> list[dict[str, Any]]:
        return [descriptor.as_mcp_tool() for descriptor in self._tools.values()]


def _parse_parameter(tool: str, raw: Any) -> ExecutionParameter:
    if not isinstance(raw, dict) or not isinstance(raw.get("name"), str):
        raise CatalogError(f"Tool '{tool}': execution parameter needs a name: {raw!r}")
    where = raw.get("in", raw.get("location"))
    try:
        location = ParameterLocation(str(where).lower())
    except ValueError:
        raise CatalogError(f"Tool '{tool}': unknown parameter location {where!r} for '{raw['name']}'") from None
    return ExecutionParameter(raw["name"], location)


def parse_descriptor(raw: Any) -> ToolDescriptor:
    if not isinstance(raw, dict):
        raise CatalogError(f"Catalog entry must be a mapping, got {type(raw).__name__}")
    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        raise CatalogError(f"Catalog entry without a name: {raw!r}")
    method = raw.get("method")
    path_template = raw.get("pathTemplate", raw.get("path_template"))
    if not isinstance(method, str) or not method.strip():
        raise CatalogError(f"Tool '{name}': missing HTTP method")
    if not isinstance(path_template, str) or not path_template:
        raise CatalogError(f"Tool '{name}': missing path template")

    schema = raw.get("inputSchema", raw.get("input_schema")) or {"type": "object"}
    if not isinstance(schema, dict):
        raise CatalogError(f"Tool '{name}': input schema must be a mapping")

    raw_params = raw.get("executionParameters", raw.get("execution_parameters")) or []
    if not isinstance(raw_params, list):
        raise CatalogError(f"Tool '{name}': executionParameters must be a list")
    params = tuple(_parse_parameter(name, item) for item in raw_params)

    raw_body = raw.get("requestBodyContentType", raw.get("body_content_type"))
    body_type = None
    if raw_body:
        try:
            body_type = BodyContentType(str(raw_body).lower())
        except ValueError:
            raise CatalogError(f"Tool '{name}': unsupported body content type {raw_body!r}") from None

    descriptor = ToolDescriptor(
        name=name.strip(),
        description=str(raw.get("description") or "").strip(),
        input_schema=schema,
        method=method.strip().upper(),
        path_template=path_template,
        execution_parameters=params,
        body_content_type=body_type,
        security_requirements=tuple(raw.get("securityRequirements") or ()),
    )
    declared = {p.name for p in params if p.location is ParameterLocation.PATH}
    missing = [token for token in descriptor.path_tokens() if token not in declared]
    if missing:
        _log.warning("Tool '%s': path tokens %s have no path parameter", descriptor.name, missing)
    return descriptor


def load_catalog(path: Path | str | None = None) -> Catalog:
    source = Path(path).expanduser() if path else DEFAULT_CATALOG_PATH
    try:
        raw = yaml.safe_load(source.read_text(encoding="utf-8"))
    except OSError as exc:
        raise CatalogError(f"Cannot read tool catalog {source}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise CatalogError(f"Tool catalog {source} is not valid YAML: {exc}") from exc
    entries = raw.get("tools") if isinstance(raw, dict) else raw
    if not isinstance(entries, list):
        raise CatalogError(f"Tool catalog {source} must contain a 'tools' list")
    catalog = Catalog([parse_descriptor(entry) for entry in entries])
    _log.debug("Loaded %d tools from %s", len(catalog), source)
    return catalog
