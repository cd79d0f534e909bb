"""Tool declarations: arithmetic demos, snippet CRUD and widget launchers."""

from __future__ import annotations

import asyncio
from typing import Any

from .errors import NOT_FOUND, SnippetServerError
from .logging import get_logger
from .models import SNIPPET_SCHEMA
from .registry import ToolRegistry, ToolResult
from .storage import SnippetStore, StorageError
from .widgets import WidgetDefinition, widget_tool_meta

LOGGER = get_logger(__name__)


def _object_schema(properties: dict[str, Any], *, required: list[str] | None = None) -> dict[str, Any]:
    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required is not None:
        schema["required"] = required
    else:
        schema["required"] = list(properties)
    return schema


_NUMBER_PAIR_SCHEMA = _object_schema(
    {
        "a": {"type": "number", "description": "First operand."},
        "b": {"type": "number", "description": "Second operand."},
    }
)

_NUMBER_RESULT_SCHEMA = _object_schema({"result": {"type": "number"}})

_SNIPPET_FIELDS_SCHEMA: dict[str, Any] = {
    "title": {"type": "string", "description": "Short label shown in listings."},
    "language": {"type": "string", "description": "Language of the code, e.g. 'py' or 'ts'."},
    "code": {"type": "string", "description": "The snippet body."},
}

_SNIPPET_ID_SCHEMA: dict[str, Any] = {"type": "string", "description": "Identifier returned by create_snippet."}


def register_demo_tools(registry: ToolRegistry) -> None:
    @registry.tool(
        "multiply",
        title="Multiplication tool",
        description="Multiply two numbers",
        input_schema=_NUMBER_PAIR_SCHEMA,
        output_schema=_NUMBER_RESULT_SCHEMA,
    )
    async def multiply(a: float, b: float) -> dict[str, Any]:
        return {"result": a * b}

    @registry.tool(
        "add",
        title="Addition Tool",
        description="Add two numbers",
        input_schema=_NUMBER_PAIR_SCHEMA,
        output_schema=_NUMBER_RESULT_SCHEMA,
    )
    async def add(a: float, b: float) -> dict[str, Any]:
        return {"result": a + b}

    @registry.tool(
        "hello",
        title="Hello tool",
        description="Just saying hello",
        input_schema=_object_schema({"name": {"type": "string", "description": "Who to greet."}}),
        output_schema=_object_schema({"result": {"type": "string"}}),
    )
    async def hello(name: str) -> dict[str, Any]:
        return {"result": f"Hello {name}"}


def register_snippet_tools(registry: ToolRegistry, store: SnippetStore, *, owner_id: str) -> None:
    """Register the snippet CRUD tools, all scoped to ``owner_id``.

    Storage failures and missing records are reported as regular results whose
    text explains the problem; the envelope's ``error`` field carries the code.
    """

    @registry.tool(
        "create_snippet",
        title="Create snippet",
        description="Save a new code snippet",
        input_schema=_object_schema(dict(_SNIPPET_FIELDS_SCHEMA)),
    )
    async def create_snippet(title: str, language: str, code: str) -> ToolResult:
        try:
            snippet = await asyncio.to_thread(store.create, owner_id, title, language, code)
        except StorageError as exc:
            LOGGER.warning("tool.create_snippet.failed", extra={"context": exc.to_dict()})
            return ToolResult.from_error(exc, text=f"Error creating snippet: {exc.message}")
        return ToolResult(text=f"Snippet '{snippet.title}' created with id {snippet.id}.")

    @registry.tool(
        "get_snippets",
        title="List snippets",
        description="List every snippet saved by the current user",
        input_schema=_object_schema({}),
        output_schema=_object_schema({"snippets": {"type": "array", "items": SNIPPET_SCHEMA}}),
    )
    async def get_snippets() -> ToolResult:
        try:
            snippets = await asyncio.to_thread(store.list, owner_id)
        except StorageError as exc:
            LOGGER.warning("tool.get_snippets.failed", extra={"context": exc.to_dict()})
            return ToolResult.from_error(
                exc,
                text=f"Error retrieving snippets: {exc.message}",
                structured={"snippets": []},
            )
        return ToolResult(
            text=f"Found {len(snippets)} snippet(s).",
            structured={"snippets": [snippet.to_dict() for snippet in snippets]},
        )

    @registry.tool(
        "update_snippet",
        title="Update snippet",
        description="Replace the title, language and code of an existing snippet",
        input_schema=_object_schema({"id": _SNIPPET_ID_SCHEMA, **_SNIPPET_FIELDS_SCHEMA}),
    )
    async def update_snippet(id: str, title: str, language: str, code: str) -> ToolResult:
        try:
            snippet = await asyncio.to_thread(store.update, owner_id, id, title, language, code)
        except StorageError as exc:
            LOGGER.warning("tool.update_snippet.failed", extra={"context": exc.to_dict()})
            return ToolResult.from_error(exc, text=f"Error updating snippet: {exc.message}")
        if snippet is None:
            return ToolResult.from_error(
                SnippetServerError(
                    NOT_FOUND,
                    f"Snippet {id} not found or you do not have permission to update it.",
                    details={"id": id},
                )
            )
        return ToolResult(text=f"Snippet {snippet.id} updated.")

    @registry.tool(
        "delete_snippet",
        title="Delete snippet",
        description="Delete a snippet by id",
        input_schema=_object_schema({"id": _SNIPPET_ID_SCHEMA}),
    )
    async def delete_snippet(id: str) -> ToolResult:
        try:
            deleted = await asyncio.to_thread(store.delete, owner_id, id)
        except StorageError as exc:
            LOGGER.warning("tool.delete_snippet.failed", extra={"context": exc.to_dict()})
            return ToolResult.from_error(exc, text=f"Error deleting snippet: {exc.message}")
        if not deleted:
            return ToolResult.from_error(
                SnippetServerError(
                    NOT_FOUND,
                    f"Snippet {id} not found or you do not have permission to delete it.",
                    details={"id": id},
                )
            )
        return ToolResult(text=f"Snippet {id} deleted.")


def register_widget_tool(registry: ToolRegistry, widget: WidgetDefinition, *, field: str, description: str) -> None:
    """Register a tool whose only job is to make the host render ``widget``."""

    async def show_widget(**_arguments: str) -> ToolResult:
        return ToolResult(text=widget.acknowledgement, structured={})

    registry.tool(
        widget.tool_name,
        title=widget.title,
        description=description,
        input_schema=_object_schema({field: {"type": "string"}}),
        meta=widget_tool_meta(widget),
    )(show_widget)
