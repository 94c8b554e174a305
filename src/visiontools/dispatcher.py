"""
Tool dispatch: one MCP tool call -> one HTTP request against the vision API.

    invoke(name, args)
      -> attach credential -> validate -> route -> build body -> send
      -> interpret response            (2xx)
      -> describe_error(...)           (anything else)

Every failure comes back as a single text content block; ``invoke`` never
raises.  No retries, no caching, no state kept between invocations apart
from compiled schemas.
"""
from __future__ import annotations

import logging
from typing import Any

import httpx

from .body import PreparedRequest, prepare_request
from .catalog import Catalog, ToolDescriptor
from .config import ServerConfig
from .errors import UnknownToolError, ValidationError, describe_error
from .response import interpret, text_block
from .router import CREDENTIAL_ARGUMENT, route
from .schema import CompiledSchema, compile_schema
from .transport import send

_log = logging.getLogger(__name__)


class Dispatcher:
    def __init__(
        self,
        catalog: Catalog,
        config: ServerConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.catalog = catalog
        self.config = config
        self._transport = transport
        self._schemas: dict[str, CompiledSchema] = {}

    def _schema_for(self, descriptor: ToolDescriptor) -> CompiledSchema:
        compiled = self._schemas.get(descriptor.name)
        if compiled is None:
            compiled = compile_schema(descriptor.input_schema)
            self._schemas[descriptor.name] = compiled
        return compiled

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.config.http_timeout,
            transport=self._transport,
        )

    def validate(self, descriptor: ToolDescriptor, raw_args: Any) -> dict[str, Any]:
        args = dict(raw_args) if isinstance(raw_args, dict) else {}
        credential = self.config.authorization
        if credential:
            args[CREDENTIAL_ARGUMENT] = credential
        try:
            return self._schema_for(descriptor).validate(args)
        except ValidationError as exc:
            raise exc.for_tool(descriptor.name) from None

    async def prepare(
        self,
        descriptor: ToolDescriptor,
        raw_args: Any,
        client: httpx.AsyncClient | None = None,
    ) -> PreparedRequest:
        args = self.validate(descriptor, raw_args)
        routed = route(descriptor, args)
        return await prepare_request(
            descriptor.method,
            f"{self.config.base_url}{routed.path}",
            params=routed.query,
            headers={"Accept": "application/json", **routed.headers},
            content_type=descriptor.body_content_type,
            body=routed.body,
            client=client,
        )

    async def invoke(self, tool_name: str, raw_args: Any = None) -> list[dict[str, Any]]:
        try:
            descriptor = self.catalog.get(tool_name)
            if descriptor is None:
                raise UnknownToolError(tool_name)
            async with self._client() as client:
                request = await self.prepare(descriptor, raw_args, client)
                _log.info('Executing tool "%s": %s %s', tool_name, request.method, request.url)
                response = await send(client, request.method, request.url, **request.httpx_kwargs())
            return interpret(
                response,
                output_directory=self.config.output_directory,
                image_display_enabled=self.config.image_display_enabled,
            )
        except Exception as exc:  # noqa: BLE001
            message = describe_error(exc)
            _log.warning("Error during execution of tool '%s': %s", tool_name, message)
            return [text_block(message)]
