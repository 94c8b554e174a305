from __future__ import annotations

import logging
from typing import Any

import httpx

from .errors import RemoteApiError, RequestSetupError, TransportError

_log = logging.getLogger(__name__)


def _response_body(response: httpx.Response) -> Any:
    content_type = response.headers.get("content-type", "").lower()
    if "application/json" in content_type:
        try:
            return response.json()
        except ValueError:
            pass
    return response.text


async def send(client: httpx.AsyncClient, method: str, url: str, **kwargs: Any) -> httpx.Response:
    """Issue exactly one request; failures come back as VisionToolError subclasses."""
    try:
        response = await client.request(method, url, **kwargs)
    except (httpx.InvalidURL, httpx.UnsupportedProtocol) as exc:
        raise RequestSetupError(str(exc) or type(exc).__name__) from exc
    except httpx.RequestError as exc:
        _log.debug("No response for %s %s: %r", method, url, exc)
        raise TransportError(str(exc), code=type(exc).__name__) from exc
    if not response.is_success:
        raise RemoteApiError(response.status_code, response.reason_phrase, _response_body(response))
    return response
