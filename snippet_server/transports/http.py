"""Streamable HTTP transport: one POST endpoint, one protocol session per request."""

from __future__ import annotations

import asyncio
import itertools
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Mapping, Sequence

import uvicorn
from fastmcp.utilities.logging import temporary_log_level
from mcp.server.lowlevel import Server
from mcp.server.streamable_http_manager import StreamableHTTPSessionManager
from starlette.applications import Starlette
from starlette.routing import BaseRoute, Route
from starlette.types import Receive, Scope, Send

from .. import metrics
from ..logging import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class HttpTransportConfig:
    """Configuration for the HTTP transport layer."""

    host: str
    port: int
    http_path: str
    metrics_path: str
    enable_metrics: bool
    json_response: bool = True


class SessionPerRequestApp:
    """ASGI endpoint handing every inbound request to a fresh, stateless session.

    The session manager builds a new transport bound to the shared server for
    each call and tears it down once the response is written; nothing about the
    session outlives the request, including on error paths.
    """

    def __init__(self, session_manager: StreamableHTTPSessionManager) -> None:
        self._session_manager = session_manager
        self._counter = itertools.count(1)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request_number = next(self._counter)
        context = {"request": request_number, "path": scope.get("path")}
        metrics.record_session()
        logger.debug("transport.http.session.open", extra={"context": context})
        try:
            await self._session_manager.handle_request(scope, receive, send)
        except Exception:
            logger.exception("transport.http.session.failed", extra={"context": context})
            raise
        finally:
            logger.debug("transport.http.session.close", extra={"context": context})


def describe_routes(config: HttpTransportConfig) -> Mapping[str, str]:
    """Return a mapping of logical endpoints to their configured paths."""

    routes: dict[str, str] = {"http": _normalise_path(config.http_path)}
    if config.enable_metrics:
        routes["metrics"] = _normalise_path(config.metrics_path)
    return routes


def build_http_app(
    server: Server,
    config: HttpTransportConfig,
    *,
    extra_routes: Sequence[BaseRoute] = (),
) -> Starlette:
    """Create the Starlette application exposing the MCP endpoint."""

    http_path = _normalise_path(config.http_path)
    session_manager = StreamableHTTPSessionManager(
        app=server,
        event_store=None,
        json_response=config.json_response,
        stateless=True,
    )
    endpoint = SessionPerRequestApp(session_manager)

    routes: list[BaseRoute] = [Route(http_path, endpoint=endpoint, methods=["POST"])]
    routes.extend(extra_routes)

    @asynccontextmanager
    async def lifespan(_app):
        async with session_manager.run():
            yield

    app = Starlette(routes=routes, lifespan=lifespan)
    app.state.mcp_server = server
    app.state.path = http_path
    return app


def run_http(
    server: Server,
    config: HttpTransportConfig,
    *,
    extra_routes: Sequence[BaseRoute] = (),
) -> None:
    """Serve the MCP endpoint with uvicorn until interrupted.

    A listener that cannot bind makes uvicorn exit with status 1.
    """

    context = {
        "host": config.host,
        "port": config.port,
        "routes": dict(describe_routes(config)),
        "json_response": config.json_response,
    }

    async def _serve() -> None:
        app = build_http_app(server, config, extra_routes=extra_routes)
        log_level = logger.level if isinstance(logger.level, int) else None

        uvicorn_config = uvicorn.Config(
            app,
            host=config.host,
            port=config.port,
            timeout_graceful_shutdown=0,
            lifespan="on",
        )
        server_instance = uvicorn.Server(uvicorn_config)

        logger.info(
            "transport.http.serve",
            extra={"context": {**context, "url": f"http://{config.host}:{config.port}{app.state.path}"}},
        )

        with temporary_log_level(level=log_level):
            await server_instance.serve()

    logger.info("transport.http.start", extra={"context": context})
    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        logger.info("transport.http.interrupted", extra={"context": context})
        raise
    except Exception:
        logger.exception("transport.http.failed", extra={"context": context})
        raise
    else:
        logger.info("transport.http.stop", extra={"context": context})


def _normalise_path(path: str) -> str:
    if not path.startswith("/"):
        path = "/" + path
    if len(path) > 1 and path.endswith("/"):
        path = path.rstrip("/")
    return path
