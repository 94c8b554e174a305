from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlencode

import httpx

from .catalog import BodyContentType
from .errors import RequestSetupError
from .files import FileReference, check_reference, resolve, resolve_inline
from .router import RequestBody


@dataclass
class PreparedRequest:
    method: str
    url: str
    params: dict[str, Any] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    # httpx keyword arguments carrying the body: json= / content= / files=
    body: dict[str, Any] = field(default_factory=dict)

    def httpx_kwargs(self) -> dict[str, Any]:
        return {"params": self.params or None, "headers": self.headers, **self.body}


def _form_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value)
    return str(value)


def _form_items(name: str, value: Any) -> list[tuple[str, str]]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [(name, _form_text(item)) for item in value if item is not None]
    return [(name, _form_text(value))]


async def _inline_fields(body: RequestBody, client: httpx.AsyncClient | None) -> list[tuple[str, Any]]:
    fields: list[tuple[str, Any]] = []
    for name, value in body.fields:
        if isinstance(value, FileReference):
            value = await resolve_inline(value.reference, value.kind, client=client)
        fields.append((name, value))
    return fields


async def _json_body(body: RequestBody, client: httpx.AsyncClient | None) -> dict[str, Any]:
    if body.raw is not None:
        return {"json": body.raw}
    return {"json": dict(await _inline_fields(body, client))}


async def _multipart_body(body: RequestBody, client: httpx.AsyncClient | None) -> dict[str, Any]:
    # File parts first, then text parts, each group in the caller's order.
    file_parts: list[tuple[str, Any]] = []
    text_parts: list[tuple[str, Any]] = []
    for name, value in body.fields:
        if isinstance(value, FileReference):
            loaded = await resolve(value.reference, value.kind, client=client, output_format=None)
            file_parts.append((name, (loaded.filename, loaded.data, loaded.content_type)))
            continue
        for key, text in _form_items(name, value):
            # A None filename makes httpx emit a plain form field.
            text_parts.append((key, (None, text.encode("utf-8"))))
    return {"files": file_parts + text_parts}


async def _urlencoded_body(body: RequestBody, client: httpx.AsyncClient | None) -> dict[str, Any]:
    pairs: list[tuple[str, str]] = []
    for name, value in await _inline_fields(body, client):
        pairs.extend(_form_items(name, value))
    return {
        "content": urlencode(pairs),
        "headers": {"content-type": BodyContentType.URLENCODED.value},
    }


async def build_body(
    content_type: BodyContentType | None,
    body: RequestBody | None,
    *,
    client: httpx.AsyncClient | None = None,
) -> dict[str, Any]:
    """Encode ``body`` for ``content_type``; returns httpx keyword arguments.

    A ``headers`` entry, when present, must be merged into the request
    headers by the caller.
    """
    if content_type is None or body is None:
        return {}
    # Every reference is checked before the first one is fetched.
    for ref in body.file_references():
        check_reference(ref.reference)
    if content_type is BodyContentType.JSON:
        return await _json_body(body, client)
    if body.raw is not None:
        raise RequestSetupError(
            f"Request body for {content_type.value} must be an object or a key=value&key2=value2 string"
        )
    if content_type is BodyContentType.MULTIPART:
        return await _multipart_body(body, client)
    return await _urlencoded_body(body, client)


async def prepare_request(
    method: str,
    url: str,
    *,
    params: dict[str, Any],
    headers: dict[str, str],
    content_type: BodyContentType | None,
    body: RequestBody | None,
    client: httpx.AsyncClient | None = None,
) -> PreparedRequest:
    encoded = await build_body(content_type, body, client=client)
    merged = {**headers, **encoded.pop("headers", {})}
    return PreparedRequest(method=method, url=url, params=dict(params), headers=merged, body=encoded)
