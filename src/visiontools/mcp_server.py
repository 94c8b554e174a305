"""
MCP (Model Context Protocol) server for the vision tools API.

Every tool in the catalog is listed to the MCP client; a tool call is
translated into a single HTTP request against the vision API and the
response is handed back as MCP content blocks (text, plus an inline image
when the API returns one and image display is enabled).

Protocol: JSON-RPC 2.0 over stdio (one JSON object per line).  Logging
goes to stderr so stdout stays a clean JSON-RPC stream.

Usage
-----
Run directly:
    python -m visiontools.mcp_server

Or via the CLI:
    visiontools mcp

MCP client entry
----------------
{
  "mcpServers": {
    "vision-tools": {
      "command": "visiontools",
      "args": ["mcp"],
      "env": {
        "VISION_AGENT_API_KEY": "<key>",
        "OUTPUT_DIRECTORY": "~/vision-output",
        "IMAGE_DISPLAY_ENABLED": "true"
      }
    }
  }
}
"""
from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any

from .catalog import load_catalog
from .config import configure_logging, ensure_output_directory, load_config
from .dispatcher import Dispatcher

SERVER_NAME = "vision-tools-api"
SERVER_VERSION = "0.1.0"

_SUPPORTED_PROTOCOLS = {"2024-11-05", "2025-03-26"}

_log = logging.getLogger(__name__)
_dispatcher: Dispatcher | None = None


def _get_dispatcher() -> Dispatcher:
    global _dispatcher
    if _dispatcher is None:
        config = ensure_output_directory(load_config())
        _dispatcher = Dispatcher(load_catalog(config.catalog_path), config)
    return _dispatcher


def set_dispatcher(dispatcher: Dispatcher | None) -> None:
    global _dispatcher
    _dispatcher = dispatcher


async def _call_tool(name: str, arguments: dict[str, Any]) -> list[dict[str, Any]]:
    """Dispatch a tool call and return a list of MCP content blocks."""
    return await _get_dispatcher().invoke(name, arguments)


# ---------------------------------------------------------------------------
# JSON-RPC 2.0 helpers
# ---------------------------------------------------------------------------

def _ok(request_id: Any, result: Any) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def _err(request_id: Any, code: int, message: str) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


def _write(obj: dict) -> None:
    sys.stdout.write(json.dumps(obj) + "\n")
    sys.stdout.flush()


# ---------------------------------------------------------------------------
# Main request handler
# ---------------------------------------------------------------------------

async def _handle(line: str) -> None:
    try:
        req = json.loads(line)
    except json.JSONDecodeError:
        _write(_err(None, -32700, "Parse error"))
        return
    if not isinstance(req, dict):
        _write(_err(None, -32600, "Invalid Request"))
        return

    req_id = req.get("id")
    method = req.get("method", "")
    params = req.get("params") or {}
    if not isinstance(params, dict):
        if req_id is not None:
            _write(_err(req_id, -32602, "Invalid params"))
        return

    if method == "initialize":
        client_ver = params.get("protocolVersion", "2024-11-05")
        agreed_ver = client_ver if client_ver in _SUPPORTED_PROTOCOLS else "2024-11-05"
        _write(_ok(req_id, {
            "protocolVersion": agreed_ver,
            "capabilities": {"tools": {}},
            "serverInfo": {
                "name": SERVER_NAME,
                "version": SERVER_VERSION,
            },
        }))

    elif method in {"notifications/initialized", "initialized"}:
        # Notification; no response
        pass

    elif method == "tools/list":
        _write(_ok(req_id, {"tools": _get_dispatcher().catalog.list_tools()}))

    elif method == "tools/call":
        tool_name = params.get("name", "")
        arguments = params.get("arguments") or {}
        content_blocks = await _call_tool(tool_name, arguments)
        _write(_ok(req_id, {
            "content": content_blocks,
            "isError": False,
        }))

    elif method == "ping":
        _write(_ok(req_id, {}))

    else:
        if req_id is not None:
            _write(_err(req_id, -32601, f"Method not found: {method}"))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

async def _run() -> None:
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    protocol = asyncio.StreamReaderProtocol(reader)
    await loop.connect_read_pipe(lambda: protocol, sys.stdin)

    dispatcher = _get_dispatcher()
    _log.info(
        "%s MCP Server (v%s) running on stdio, proxying API at %s (%d tools)",
        SERVER_NAME, SERVER_VERSION, dispatcher.config.base_url, len(dispatcher.catalog),
    )
    # One task per request; tool calls may overlap.
    pending: set[asyncio.Task] = set()
    while True:
        try:
            line_bytes = await reader.readline()
        except (ConnectionError, ValueError) as exc:
            _log.error("stdin read failed: %s", exc)
            break
        if not line_bytes:
            break
        line = line_bytes.decode(errors="replace").strip()
        if line:
            task = asyncio.create_task(_handle(line))
            pending.add(task)
            task.add_done_callback(pending.discard)
    if pending:
        await asyncio.gather(*pending)
    _log.info("Shutting down MCP server")


def main() -> None:
    configure_logging(load_config().log_level)
    asyncio.run(_run())


if __name__ == "__main__":
    main()
