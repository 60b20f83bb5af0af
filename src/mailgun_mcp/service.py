"""Tool dispatch: binds generated tools to the MCP server's request handlers."""

from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List

from mcp import types
from mcp.shared.exceptions import McpError

from .executors import RestExecutor, UpstreamResponse, UpstreamUnavailableError
from .logging import redact_payload
from .models import ToolDefinition
from .schema import SchemaValidationError

logger = logging.getLogger(__name__)

ToolHandler = Callable[[Dict[str, Any]], Awaitable[types.CallToolResult]]


class ToolService:
    """Dispatch table for generated tools.

    Upstream non-2xx responses come back as ``CallToolResult`` objects with
    ``isError`` set. Invalid input, unknown tools and unreachable upstreams
    are raised as :class:`McpError`, which the protocol server turns into
    JSON-RPC error responses.
    """

    def __init__(self, executor: RestExecutor) -> None:
        self.executor = executor
        self._tools: Dict[str, ToolDefinition] = {}
        self._handlers: Dict[str, ToolHandler] = {}

    def register(self, tool: ToolDefinition) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool
        self._handlers[tool.name] = self._tool_handler(tool)
        logger.debug("Registered tool: %s", tool.name)

    def register_all(self, tools: Iterable[ToolDefinition]) -> None:
        for tool in tools:
            self.register(tool)
        logger.info("Registered %s tools", len(self._tools))

    def install(self, server: Any) -> None:
        """Point the low-level server's ``tools/list`` and ``tools/call`` at this service.

        ``FastMCP.tool`` and the low-level ``call_tool`` decorator turn every
        exception into an ``isError`` tool result. Invalid arguments, unknown
        tools and an unreachable upstream must reach the client as JSON-RPC
        errors (-32602 / -32603), so the request handlers are installed
        directly; an :class:`McpError` raised here becomes the error response.
        """
        server.request_handlers[types.ListToolsRequest] = self._handle_list_tools
        server.request_handlers[types.CallToolRequest] = self._handle_call_tool

    @property
    def tools(self) -> List[ToolDefinition]:
        return list(self._tools.values())

    def list_tools(self) -> List[types.Tool]:
        return [
            types.Tool(name=tool.name, description=tool.description, inputSchema=tool.input_schema())
            for tool in self._tools.values()
        ]

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> types.CallToolResult:
        handler = self._handlers.get(name)
        if handler is None:
            raise McpError(types.ErrorData(code=types.INVALID_PARAMS, message=f"Unknown tool: {name}"))
        return await handler(arguments)

    async def _handle_list_tools(self, _request: types.ListToolsRequest) -> types.ServerResult:
        return types.ServerResult(types.ListToolsResult(tools=self.list_tools()))

    async def _handle_call_tool(self, request: types.CallToolRequest) -> types.ServerResult:
        result = await self.call_tool(request.params.name, request.params.arguments or {})
        return types.ServerResult(result)

    def _tool_handler(self, tool: ToolDefinition) -> ToolHandler:
        async def handler(arguments: Dict[str, Any]) -> types.CallToolResult:
            try:
                accepted = self.executor.validate(tool, arguments)
            except SchemaValidationError as exc:
                logger.info("Rejected arguments for tool=%s: %s", tool.name, exc)
                raise McpError(
                    types.ErrorData(
                        code=types.INVALID_PARAMS,
                        message=f"Invalid arguments for tool {tool.name}: {exc}",
                        data={"field": exc.field_path},
                    )
                ) from exc

            try:
                response = await self.executor.execute(tool, accepted)
            except UpstreamUnavailableError as exc:
                logger.error(
                    "Upstream unavailable for tool=%s payload=%s: %s",
                    tool.name,
                    redact_payload(accepted),
                    exc,
                )
                raise McpError(
                    types.ErrorData(code=types.INTERNAL_ERROR, message=f"Upstream request failed: {exc}")
                ) from exc

            if response.ok:
                return self._format_result(response)
            logger.warning("Upstream returned %s for tool=%s", response.status_code, tool.name)
            return self._format_error(response)

        handler.__name__ = tool.name
        return handler

    def _format_result(self, response: UpstreamResponse) -> types.CallToolResult:
        return types.CallToolResult(
            content=[types.TextContent(type="text", text=_render(response.body))],
            isError=False,
        )

    def _format_error(self, response: UpstreamResponse) -> types.CallToolResult:
        text = f"Upstream API returned HTTP {response.status_code}: {_render(response.body)}"
        return types.CallToolResult(
            content=[types.TextContent(type="text", text=text)],
            structuredContent={"status": response.status_code, "body": response.body},
            isError=True,
        )


def _render(body: Any) -> str:
    if body is None:
        return ""
    if isinstance(body, str):
        return body
    return json.dumps(body, indent=2)
