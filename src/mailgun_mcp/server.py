"""MCP server setup for the Mailgun MCP server."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import httpx
from fastmcp import FastMCP
from starlette.applications import Starlette
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from .config import Settings
from .executors import RestExecutor, UpstreamCredential
from .http_transport import StreamableHTTPEndpoint
from .models import ToolDefinition
from .openapi import OpenAPIError, OpenAPILoader
from .service import ToolService
from .sessions import SessionRegistry
from .tool_registry import ToolGenerationError, ToolRegistry

logger = logging.getLogger(__name__)


class StartupError(RuntimeError):
    """The server cannot start serving."""


async def build_server(
    settings: Settings,
    document: Optional[Dict[str, Any]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Tuple[FastMCP, ToolService]:
    """Load the OpenAPI document, generate tools and bind them to a FastMCP server."""
    openapi_loader = OpenAPILoader(
        cache_seconds=settings.openapi_cache_seconds,
        timeout_seconds=settings.upstream_timeout_seconds,
    )
    try:
        if document is None:
            document = await openapi_loader.load(settings.openapi_location)
        else:
            openapi_loader.check(document)
        tools = ToolRegistry(openapi_loader).generate(document)
    except (OpenAPIError, ToolGenerationError) as exc:
        raise StartupError(str(exc)) from exc

    base_url = settings.upstream_base_url or openapi_loader.server_url(document)
    if not base_url:
        raise StartupError("No upstream base URL: set UPSTREAM_BASE_URL or declare servers in the document")

    executor = RestExecutor(
        base_url=base_url,
        credential=UpstreamCredential(
            secret=settings.mailgun_api_key.get_secret_value(),
            scheme=settings.upstream_auth_scheme.lower(),
            username=settings.upstream_username,
        ),
        timeout_seconds=settings.upstream_timeout_seconds,
        verify_ssl=settings.upstream_verify_ssl,
        transport=transport,
    )
    service = ToolService(executor)
    service.register_all(tools)

    mcp = FastMCP(settings.service_name, instructions=_instructions(tools))
    service.install(mcp._mcp_server)
    return mcp, service


def build_http_app(mcp: FastMCP, settings: Settings) -> Starlette:
    """Starlette app serving ``/mcp`` sessions and ``/health``."""
    registry = SessionRegistry(mcp._mcp_server, json_response=settings.mcp_json_response)
    endpoint = StreamableHTTPEndpoint(registry)

    @asynccontextmanager
    async def lifespan(_app: Starlette) -> AsyncIterator[None]:
        async with registry.run():
            yield

    app = Starlette(
        routes=[
            Route("/health", _healthcheck(settings), methods=["GET"]),
            Route("/mcp", endpoint, methods=["GET", "POST", "DELETE"]),
        ],
        lifespan=lifespan,
    )
    app.state.sessions = registry
    _attach_cors(app, settings)
    return app


def _healthcheck(settings: Settings):  # type: ignore[no-untyped-def]
    async def healthcheck(_request: Request) -> JSONResponse:
        return JSONResponse(
            {
                "status": "healthy",
                "service": settings.service_name,
                "transport": "http",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        )

    return healthcheck


def _attach_cors(app: Starlette, settings: Settings) -> None:
    origins = settings.allowed_origins()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials="*" not in origins,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "mcp-session-id", "mcp-protocol-version", "Last-Event-ID"],
        expose_headers=["mcp-session-id"],
    )


def _instructions(tools: List[ToolDefinition]) -> str:
    return (
        "Mailgun API exposed as MCP tools. "
        f"{len(tools)} tools are generated from the Mailgun OpenAPI document; "
        "each tool maps to one REST endpoint."
    )
