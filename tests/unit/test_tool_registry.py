from __future__ import annotations

import pytest

from snippet_server import metrics
from snippet_server.errors import INTERNAL_ERROR, UNKNOWN_TOOL, VALIDATION_ERROR, RegistrationError, SnippetServerError
from snippet_server.registry import ToolRegistry, ToolResult, ToolSpec, compile_uri_template
from snippet_server.tools import register_demo_tools

_PAIR = {
    "type": "object",
    "properties": {"a": {"type": "number"}, "b": {"type": "number"}},
    "required": ["a", "b"],
    "additionalProperties": False,
}


def _registry_with_spy() -> tuple[ToolRegistry, list[dict]]:
    calls: list[dict] = []
    registry = ToolRegistry()

    @registry.tool("spy", input_schema=_PAIR)
    async def spy(a: float, b: float) -> str:
        calls.append({"a": a, "b": b})
        return "ok"

    return registry, calls


@pytest.mark.asyncio
async def test_demo_tools_compute_results() -> None:
    registry = ToolRegistry()
    register_demo_tools(registry)

    product = await registry.invoke("multiply", {"a": 3, "b": 4})
    total = await registry.invoke("add", {"a": 3, "b": 4})
    greeting = await registry.invoke("hello", {"name": "Ada"})

    assert product.structured == {"result": 12}
    assert total.structured == {"result": 7}
    assert greeting.structured == {"result": "Hello Ada"}
    assert product.error is None


@pytest.mark.asyncio
async def test_mapping_results_are_serialized_into_text() -> None:
    registry = ToolRegistry()
    register_demo_tools(registry)

    result = await registry.invoke("add", {"a": 1.5, "b": 1})

    assert result.text == '{"result": 2.5}'


@pytest.mark.asyncio
async def test_unknown_tool_is_rejected() -> None:
    registry, calls = _registry_with_spy()

    with pytest.raises(SnippetServerError) as exc:
        await registry.invoke("nope", {})

    assert exc.value.code == UNKNOWN_TOOL
    assert exc.value.message == "Tool nope not found"
    assert calls == []


@pytest.mark.asyncio
async def test_invalid_arguments_never_reach_handler() -> None:
    registry, calls = _registry_with_spy()

    with pytest.raises(SnippetServerError) as missing:
        await registry.invoke("spy", {"a": 3})
    with pytest.raises(SnippetServerError) as wrong_type:
        await registry.invoke("spy", {"a": "3", "b": 4})
    with pytest.raises(SnippetServerError) as extra:
        await registry.invoke("spy", {"a": 3, "b": 4, "c": 5})

    for exc in (missing, wrong_type, extra):
        assert exc.value.code == VALIDATION_ERROR
        assert exc.value.details["errors"]
    assert "'b' is a required property" in missing.value.details["errors"][0]
    assert wrong_type.value.details["errors"][0].startswith("a: ")
    assert calls == []


@pytest.mark.asyncio
async def test_sync_handlers_and_plain_strings_are_supported() -> None:
    registry = ToolRegistry()

    @registry.tool("echo", input_schema={"type": "object", "properties": {"word": {"type": "string"}}})
    def echo(word: str = "hi") -> str:
        """Say the word back."""
        return word

    result = await registry.invoke("echo", {"word": "hey"})
    default = await registry.invoke("echo")

    assert result == ToolResult(text="hey")
    assert default.text == "hi"
    assert registry.get("echo").description == "Say the word back."


@pytest.mark.asyncio
async def test_output_schema_mismatch_is_an_internal_error() -> None:
    registry = ToolRegistry()

    @registry.tool(
        "liar",
        input_schema={"type": "object"},
        output_schema={"type": "object", "properties": {"result": {"type": "number"}}, "required": ["result"]},
    )
    async def liar() -> dict:
        return {"result": "twelve"}

    with pytest.raises(SnippetServerError) as exc:
        await registry.invoke("liar", {})

    assert exc.value.code == INTERNAL_ERROR


@pytest.mark.asyncio
async def test_unsupported_return_type_is_an_internal_error() -> None:
    registry = ToolRegistry()

    @registry.tool("broken", input_schema={"type": "object"})
    async def broken() -> int:
        return 42

    with pytest.raises(SnippetServerError) as exc:
        await registry.invoke("broken", {})

    assert exc.value.code == INTERNAL_ERROR


def test_duplicate_registration_fails() -> None:
    registry, _ = _registry_with_spy()

    with pytest.raises(RegistrationError):
        registry.register(ToolSpec(name="spy", handler=lambda: "x", input_schema={"type": "object"}))

    assert len(registry) == 1
    assert "spy" in registry


def test_invalid_schema_fails_at_registration() -> None:
    with pytest.raises(RegistrationError):
        ToolSpec(name="bad", handler=lambda: "x", input_schema={"type": "not-a-type"})


def test_listing_preserves_registration_order() -> None:
    registry = ToolRegistry()
    register_demo_tools(registry)

    assert [spec.name for spec in registry.list()] == ["multiply", "add", "hello"]


@pytest.mark.asyncio
async def test_operations_and_errors_are_counted() -> None:
    registry = metrics.MetricsRegistry()
    metrics.install_registry(registry)
    tools = ToolRegistry()
    register_demo_tools(tools)
    try:
        await tools.invoke("add", {"a": 1, "b": 1})
        with pytest.raises(SnippetServerError):
            await tools.invoke("add", {"a": 1})
        with pytest.raises(SnippetServerError):
            await tools.invoke("subtract", {"a": 1, "b": 1})
        snapshot = registry.snapshot()
    finally:
        metrics.install_registry(None)

    assert snapshot.tool_calls["add"] == 1
    assert snapshot.errors == {VALIDATION_ERROR: 1, UNKNOWN_TOOL: 1}


def test_uri_template_matches_single_segments() -> None:
    pattern = compile_uri_template("users://{userId}/profile")

    assert pattern.fullmatch("users://42/profile").groupdict() == {"userId": "42"}
    assert pattern.fullmatch("users://42/extra/profile") is None
    assert pattern.fullmatch("users:///profile") is None


def test_uri_template_rejects_repeated_placeholders() -> None:
    with pytest.raises(RegistrationError):
        compile_uri_template("pair://{x}/{x}")


@pytest.mark.asyncio
async def test_undeclared_arguments_are_dropped_before_dispatch() -> None:
    registry = ToolRegistry()
    register_demo_tools(registry)

    result = await registry.invoke("multiply", {"a": 3, "b": 4, "c": 5})

    assert result.structured == {"result": 12}


def test_declared_arguments_without_properties_pass_everything() -> None:
    spec = ToolSpec(name="open", handler=lambda **kwargs: "x", input_schema={"type": "object"})

    assert spec.declared_arguments({"anything": 1}) == {"anything": 1}
