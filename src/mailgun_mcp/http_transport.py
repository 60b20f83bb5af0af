"""Streamable HTTP endpoint multiplexing MCP sessions over one route."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict

from mcp.server.streamable_http import MCP_SESSION_ID_HEADER
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import Message, Receive, Scope, Send

from .sessions import SessionRegistry

logger = logging.getLogger(__name__)

INVALID_REQUEST = -32600

MISSING_SESSION_MESSAGE = "Missing mcp-session-id header. Initialize a session first."
UNKNOWN_SESSION_MESSAGE = "Session not found. It may have expired or been closed."


def jsonrpc_error(status_code: int, message: str, code: int = INVALID_REQUEST) -> JSONResponse:
    return JSONResponse(
        {"jsonrpc": "2.0", "error": {"code": code, "message": message}, "id": None},
        status_code=status_code,
    )


def is_initialize_request(body: bytes) -> bool:
    try:
        payload: Any = json.loads(body)
    except ValueError:
        return False
    messages = payload if isinstance(payload, list) else [payload]
    return any(
        isinstance(message, dict) and message.get("method") == "initialize" and "id" in message
        for message in messages
    )


def _replay_body(body: bytes, receive: Receive) -> Receive:
    """Hand an already consumed request body to the next reader, once."""
    delivered = False

    async def replay() -> Message:
        nonlocal delivered
        if not delivered:
            delivered = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return replay


class StreamableHTTPEndpoint:
    """ASGI app for ``/mcp``: routes POST, GET and DELETE by session header."""

    def __init__(self, registry: SessionRegistry) -> None:
        self.registry = registry

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        session_id = request.headers.get(MCP_SESSION_ID_HEADER)

        if request.method == "POST":
            response = await self._handle_post(request, session_id, scope, receive, send)
        elif request.method == "GET":
            response = await self._handle_get(session_id, scope, receive, send)
        elif request.method == "DELETE":
            response = await self._handle_delete(session_id)
        else:
            response = Response(status_code=405, headers={"Allow": "GET, POST, DELETE"})

        if response is not None:
            await response(scope, receive, send)

    async def _handle_post(
        self, request: Request, session_id: str | None, scope: Scope, receive: Receive, send: Send
    ) -> Response | None:
        body = await request.body()
        receive = _replay_body(body, receive)

        if session_id is None:
            if not is_initialize_request(body):
                return jsonrpc_error(400, MISSING_SESSION_MESSAGE)
            await self._initialize(scope, receive, send)
            return None

        session = self.registry.get(session_id)
        if session is None:
            return jsonrpc_error(404, UNKNOWN_SESSION_MESSAGE)
        await session.transport.handle_request(scope, receive, send)
        return None

    async def _initialize(self, scope: Scope, receive: Receive, send: Send) -> None:
        """Open a session for an initialize request; keep it only if the transport accepted it."""
        session = await self.registry.create()
        status: Dict[str, int] = {}

        async def watch_status(message: Message) -> None:
            if message["type"] == "http.response.start":
                status["code"] = message["status"]
            await send(message)

        try:
            await session.transport.handle_request(scope, receive, watch_status)
        finally:
            code = status.get("code", 500)
            if not 200 <= code < 300:
                logger.info("Initialize rejected with HTTP %s; dropping session %s", code, session.session_id)
                await self.registry.terminate(session.session_id)

    async def _handle_get(
        self, session_id: str | None, scope: Scope, receive: Receive, send: Send
    ) -> Response | None:
        if session_id is None:
            return jsonrpc_error(400, "Missing or invalid session ID. Initialize a session first with POST /mcp")
        session = self.registry.get(session_id)
        if session is None:
            return jsonrpc_error(404, UNKNOWN_SESSION_MESSAGE)
        await session.transport.handle_request(scope, receive, send)
        return None

    async def _handle_delete(self, session_id: str | None) -> Response:
        if session_id is None or not await self.registry.terminate(session_id):
            return jsonrpc_error(404, "Session not found")
        return JSONResponse({"message": "Session terminated"}, status_code=200)
