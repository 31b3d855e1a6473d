"""CLI entry point for the Operation Gateway."""

from __future__ import annotations

import asyncio
import logging

import uvicorn

from .config import get_settings
from .logging import configure_logging
from .server import build_server

logger = logging.getLogger(__name__)


async def _run() -> None:
    settings = get_settings()
    configure_logging(settings.gateway_log_level)

    mcp, app, service = build_server(settings)
    if service.cache is not None and settings.gateway_cache_enabled:
        service.cache.start_sweeper(settings.gateway_cache_sweep_interval_seconds)
    transport = settings.gateway_transport.lower()

    try:
        if transport in {"http", "streamable-http", "streamablehttp", "sse"}:
            if not app:
                raise RuntimeError(f"HTTP app unavailable for transport={transport}")
            config = uvicorn.Config(app, host=settings.gateway_host, port=settings.gateway_port)
            server = uvicorn.Server(config)
            await server.serve()
            return
        await mcp.run_stdio_async()
    finally:
        await service.aclose()
        logger.info("Gateway stopped")


def main() -> None:
    asyncio.run(_run())


if __name__ == "__main__":
    main()
