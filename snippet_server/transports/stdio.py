"""Minimal stdio transport wiring."""

from __future__ import annotations

import asyncio

from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server

from ..logging import get_logger

logger = get_logger(__name__)


def run_stdio(server: Server) -> None:
    """Run the server using the MCP stdio transport."""

    context = {"server": server.name}

    async def _serve() -> None:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())

    logger.info("transport.stdio.start", extra={"context": context})
    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        logger.info("transport.stdio.interrupted", extra={"context": context})
        raise
    except Exception:  # pragma: no cover - defensive
        logger.exception("transport.stdio.failed", extra={"context": context})
        raise
    else:
        logger.info("transport.stdio.stop", extra={"context": context})
