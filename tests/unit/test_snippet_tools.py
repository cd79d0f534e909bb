from __future__ import annotations

import pytest

from snippet_server import metrics
from snippet_server.errors import NOT_FOUND, STORAGE_ERROR
from snippet_server.registry import ToolRegistry
from snippet_server.storage import SnippetStore
from snippet_server.tools import register_snippet_tools


def _tools_for(store: SnippetStore, owner_id: str) -> ToolRegistry:
    registry = ToolRegistry()
    register_snippet_tools(registry, store, owner_id=owner_id)
    return registry


@pytest.mark.asyncio
async def test_snippet_lifecycle_is_scoped_to_owner(tmp_path) -> None:
    store = SnippetStore(tmp_path / "snippets.json")
    mine = _tools_for(store, "user123")
    theirs = _tools_for(store, "other_user")

    created = await mine.invoke("create_snippet", {"title": "fib", "language": "py", "code": "def fib()..."})
    assert created.error is None
    assert created.text.startswith("Snippet 'fib' created with id ")

    listing = await mine.invoke("get_snippets", {})
    snippets = listing.structured["snippets"]
    assert listing.text == "Found 1 snippet(s)."
    assert [(item["title"], item["userId"]) for item in snippets] == [("fib", "user123")]
    snippet_id = snippets[0]["id"]
    assert created.text.endswith(f"{snippet_id}.")

    foreign_listing = await theirs.invoke("get_snippets", {})
    assert foreign_listing.structured == {"snippets": []}

    hijack = await theirs.invoke("update_snippet", {"id": snippet_id, "title": "x", "language": "x", "code": "x"})
    assert hijack.error["code"] == NOT_FOUND
    assert "not found or you do not have permission to update it" in hijack.text

    steal = await theirs.invoke("delete_snippet", {"id": snippet_id})
    assert steal.error["code"] == NOT_FOUND

    updated = await mine.invoke("update_snippet", {"id": snippet_id, "title": "fib2", "language": "py", "code": "pass"})
    assert updated.error is None
    assert updated.text == f"Snippet {snippet_id} updated."
    assert store.list("user123")[0].title == "fib2"

    deleted = await mine.invoke("delete_snippet", {"id": snippet_id})
    assert deleted.text == f"Snippet {snippet_id} deleted."
    again = await mine.invoke("delete_snippet", {"id": snippet_id})
    assert again.error["code"] == NOT_FOUND
    assert store.list("user123") == []


@pytest.mark.asyncio
async def test_update_with_fabricated_id_changes_nothing(tmp_path) -> None:
    path = tmp_path / "snippets.json"
    store = SnippetStore(path)
    tools = _tools_for(store, "user123")
    await tools.invoke("create_snippet", {"title": "keep", "language": "py", "code": "1"})
    before = path.read_bytes()

    result = await tools.invoke("update_snippet", {"id": "made-up", "title": "t", "language": "l", "code": "c"})

    assert result.text == "Snippet made-up not found or you do not have permission to update it."
    assert result.error == {
        "code": NOT_FOUND,
        "message": "Snippet made-up not found or you do not have permission to update it.",
        "details": {"id": "made-up"},
    }
    assert path.read_bytes() == before


@pytest.mark.asyncio
async def test_storage_failures_are_folded_into_results(tmp_path) -> None:
    path = tmp_path / "snippets.json"
    path.write_text("][", encoding="utf-8")
    tools = _tools_for(SnippetStore(path), "user123")

    created = await tools.invoke("create_snippet", {"title": "t", "language": "l", "code": "c"})
    listing = await tools.invoke("get_snippets", {})
    updated = await tools.invoke("update_snippet", {"id": "x", "title": "t", "language": "l", "code": "c"})
    deleted = await tools.invoke("delete_snippet", {"id": "x"})

    assert created.text == "Error creating snippet: Could not read snippets data."
    assert listing.text == "Error retrieving snippets: Could not read snippets data."
    assert listing.structured == {"snippets": []}
    assert updated.text.startswith("Error updating snippet:")
    assert deleted.text.startswith("Error deleting snippet:")
    for result in (created, listing, updated, deleted):
        assert result.error["code"] == STORAGE_ERROR
    assert path.read_text(encoding="utf-8") == "]["


@pytest.mark.asyncio
async def test_empty_listing_reports_zero(tmp_path) -> None:
    tools = _tools_for(SnippetStore(tmp_path / "snippets.json"), "user123")

    listing = await tools.invoke("get_snippets", {})

    assert listing.structured == {"snippets": []}
    assert listing.text == "Found 0 snippet(s)."


@pytest.mark.asyncio
async def test_business_errors_are_counted(tmp_path) -> None:
    registry = metrics.MetricsRegistry()
    metrics.install_registry(registry)
    tools = _tools_for(SnippetStore(tmp_path / "snippets.json"), "user123")
    try:
        await tools.invoke("delete_snippet", {"id": "missing"})
        snapshot = registry.snapshot()
    finally:
        metrics.install_registry(None)

    assert snapshot.errors == {NOT_FOUND: 1}
    assert snapshot.tool_calls["delete_snippet"] == 1
