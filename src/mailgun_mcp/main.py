"""CLI entry point for the Mailgun MCP server."""

from __future__ import annotations

import asyncio
import logging
import sys

import uvicorn

from .config import Settings, get_settings
from .logging import configure_logging
from .server import StartupError, build_http_app, build_server
from .shutdown import GracefulServer, ShutdownCoordinator

logger = logging.getLogger(__name__)


async def _run(settings: Settings) -> None:
    mcp, _service = await build_server(settings)
    transport = settings.transport_mode()

    if transport == "http":
        app = build_http_app(mcp, settings)
        coordinator = ShutdownCoordinator(
            app.state.sessions, grace_seconds=settings.shutdown_grace_seconds
        )
        config = uvicorn.Config(
            app,
            host=settings.host,
            port=settings.port,
            log_level=settings.log_level.lower(),
            timeout_graceful_shutdown=int(settings.shutdown_grace_seconds),
        )
        server = GracefulServer(config, coordinator)
        logger.info("%s running on http://%s:%s", settings.service_name, settings.host, settings.port)
        logger.info("  - Health check: http://%s:%s/health", settings.host, settings.port)
        logger.info("  - MCP endpoint: http://%s:%s/mcp", settings.host, settings.port)
        await server.serve()
        return
    if transport == "stdio":
        logger.info("%s running on stdio", settings.service_name)
        await mcp.run_stdio_async()
        return
    raise StartupError(f"Unsupported transport: {settings.transport!r} (expected 'stdio' or 'http')")


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    try:
        asyncio.run(_run(settings))
    except StartupError as exc:
        logger.error("Fatal error during startup: %s", exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
