"""MCP server entrypoint: registries, protocol binding and process startup."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from mcp import types
from mcp.server.lowlevel import Server
from mcp.shared.exceptions import McpError
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response
from starlette.routing import BaseRoute, Route

from . import __version__, metrics
from .config import Config, ConfigError, load_config
from .errors import (
    UNKNOWN_RESOURCE,
    UNKNOWN_TOOL,
    VALIDATION_ERROR,
    SnippetServerError,
)
from .logging import configure_logging, get_logger
from .registry import ResourceContent, ResourceRegistry, ToolRegistry, ToolResult
from .resources import register_demo_resources, register_widget_resource
from .storage import SnippetStore, StorageError
from .tools import register_demo_tools, register_snippet_tools, register_widget_tool
from .transports import HttpTransportConfig, run_http, run_stdio
from .widgets import KANBAN_BOARD, SNIPPET_BOARD, load_widget_assets, resource_meta_from_config

LOGGER = get_logger(__name__)

SERVER_NAME = "demo-server"
ERROR_META_KEY = "snippet-server/error"
RESOURCE_NOT_FOUND = -32002
_DISPATCH_ERROR_CODES = {UNKNOWN_TOOL, VALIDATION_ERROR}


@dataclass(slots=True)
class AppState:
    config: Config
    store: SnippetStore
    tools: ToolRegistry
    resources: ResourceRegistry
    server: Server


def build_registries(config: Config, store: SnippetStore) -> tuple[ToolRegistry, ResourceRegistry]:
    """Populate the tool and resource registries; any failure here is fatal."""

    tools = ToolRegistry()
    resources = ResourceRegistry()

    register_demo_tools(tools)
    register_snippet_tools(tools, store, owner_id=config.owner_id)
    register_widget_tool(
        tools,
        KANBAN_BOARD,
        field="tasks",
        description="Render the kanban board widget for the supplied tasks",
    )
    register_widget_tool(
        tools,
        SNIPPET_BOARD,
        field="language",
        description="Render the saved snippets, optionally narrowed to one language",
    )

    register_demo_resources(resources)
    widget_meta = resource_meta_from_config(config)
    for widget in (KANBAN_BOARD, SNIPPET_BOARD):
        assets = load_widget_assets(config.assets_dir, widget)
        register_widget_resource(resources, widget, assets, meta=widget_meta)

    return tools, resources


def create_server(tools: ToolRegistry, resources: ResourceRegistry, *, name: str = SERVER_NAME) -> Server:
    """Bind the registries to a low-level MCP server.

    Unknown tools and invalid arguments surface as JSON-RPC ``INVALID_PARAMS``
    errors, unknown resources as ``-32002``; everything a handler returns,
    including folded business errors, travels as a regular ``CallToolResult``.
    """

    server: Server = Server(name, version=__version__)

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        return [
            types.Tool(
                name=spec.name,
                title=spec.title,
                description=spec.description,
                inputSchema=spec.input_schema,
                outputSchema=spec.output_schema,
                _meta=spec.meta,
            )
            for spec in tools.list()
        ]

    @server.list_resources()
    async def list_resources() -> list[types.Resource]:
        return [
            types.Resource(
                uri=spec.uri,
                name=spec.name,
                title=spec.title,
                description=spec.description,
                mimeType=spec.mime_type,
                _meta=spec.meta,
            )
            for spec in resources.list_static()
        ]

    @server.list_resource_templates()
    async def list_resource_templates() -> list[types.ResourceTemplate]:
        return [
            types.ResourceTemplate(
                uriTemplate=spec.uri_template,
                name=spec.name,
                title=spec.title,
                description=spec.description,
                mimeType=spec.mime_type,
            )
            for spec in resources.list_templates()
        ]

    async def call_tool(request: types.CallToolRequest) -> types.ServerResult:
        name = request.params.name
        try:
            result = await tools.invoke(name, request.params.arguments or {})
        except SnippetServerError as exc:
            code = types.INVALID_PARAMS if exc.code in _DISPATCH_ERROR_CODES else types.INTERNAL_ERROR
            LOGGER.info("tool.dispatch.failed", extra={"context": {"tool": name, **exc.to_dict()}})
            raise McpError(types.ErrorData(code=code, message=exc.message, data=exc.to_dict())) from exc
        return types.ServerResult(to_call_tool_result(result))

    async def read_resource(request: types.ReadResourceRequest) -> types.ServerResult:
        uri = str(request.params.uri)
        content = await resources.resolve(uri)
        if content is None:
            metrics.record_error(UNKNOWN_RESOURCE)
            error = SnippetServerError(UNKNOWN_RESOURCE, f"Resource {uri} not found", details={"uri": uri})
            raise McpError(types.ErrorData(code=RESOURCE_NOT_FOUND, message=error.message, data=error.to_dict()))
        return types.ServerResult(types.ReadResourceResult(contents=[to_resource_contents(content)]))

    server.request_handlers[types.CallToolRequest] = call_tool
    server.request_handlers[types.ReadResourceRequest] = read_resource
    return server


def to_call_tool_result(result: ToolResult) -> types.CallToolResult:
    meta: dict[str, Any] = dict(result.meta or {})
    if result.error is not None:
        meta[ERROR_META_KEY] = result.error
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=result.text)],
        structuredContent=result.structured,
        isError=False,
        _meta=meta or None,
    )


def to_resource_contents(content: ResourceContent) -> types.TextResourceContents:
    return types.TextResourceContents(
        uri=content.uri,
        text=content.text,
        mimeType=content.mime_type,
        _meta=content.meta,
    )


def initialize_app(config: Config) -> AppState:
    """Build every long-lived object the transports need."""

    store = SnippetStore(config.storage_file)
    tools, resources = build_registries(config, store)
    server = create_server(tools, resources)
    metrics.install_registry(metrics.MetricsRegistry() if config.enable_metrics else None)
    LOGGER.info(
        "app.initialized",
        extra={
            "context": {
                "tools": [spec.name for spec in tools.list()],
                "resources": [spec.uri for spec in resources.list_static()],
                "templates": [spec.uri_template for spec in resources.list_templates()],
            }
        },
    )
    return AppState(config=config, store=store, tools=tools, resources=resources, server=server)


def metrics_route(path: str, store: SnippetStore) -> Route:
    async def metrics_endpoint(_request: Request) -> Response:
        registry = metrics.get_registry_optional()
        if registry is None:
            return PlainTextResponse("metrics unavailable\n", status_code=503)
        try:
            snippets_current = await asyncio.to_thread(store.count)
        except StorageError as exc:
            metrics.record_error(exc.code)
            return PlainTextResponse("metrics unavailable\n", status_code=503)
        body = metrics.format_prometheus(registry.snapshot(), snippets_current=snippets_current)
        return PlainTextResponse(body, media_type="text/plain; version=0.0.4")

    return Route(path, endpoint=metrics_endpoint, methods=["GET"], include_in_schema=False)


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for running the snippet server."""

    configure_logging()
    try:
        config = load_config(argv)
    except ConfigError as exc:
        LOGGER.error("Invalid configuration: %s", exc)
        raise SystemExit(2) from exc

    configure_logging(config.log_level)
    LOGGER.info(
        "Configuration loaded",
        extra={
            "context": {
                "storage_file": str(config.storage_file),
                "enable_http": config.enable_http,
                "enable_stdio": config.enable_stdio,
                "enable_metrics": config.enable_metrics,
                "http_port": config.http_port,
            }
        },
    )

    try:
        state = initialize_app(config)
    except (ConfigError, SnippetServerError) as exc:
        LOGGER.error("Failed to initialize server", exc_info=exc)
        raise SystemExit(1) from exc

    if config.enable_stdio:
        run_stdio(state.server)
        return

    extra_routes: list[BaseRoute] = []
    if config.enable_metrics:
        extra_routes.append(metrics_route(config.metrics_path, state.store))
    http_config = HttpTransportConfig(
        host=config.http_host,
        port=config.http_port,
        http_path=config.http_path,
        metrics_path=config.metrics_path,
        enable_metrics=config.enable_metrics,
        json_response=config.json_response,
    )
    run_http(state.server, http_config, extra_routes=extra_routes)


if __name__ == "__main__":  # pragma: no cover - manual invocation only
    main()
