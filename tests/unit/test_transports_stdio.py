from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest

from snippet_server import load_config
from snippet_server.config import ConfigError
from snippet_server.server import main as run_main
from snippet_server.transports.stdio import run_stdio


class _DummyServer:
    name = "dummy"

    def __init__(self) -> None:
        self.calls: list[tuple[Any, Any, Any]] = []

    def create_initialization_options(self) -> str:
        return "options"

    async def run(self, read_stream, write_stream, options) -> None:
        self.calls.append((read_stream, write_stream, options))


@asynccontextmanager
async def _fake_stdio_server():
    yield "reader", "writer"


def _patch_main(monkeypatch: pytest.MonkeyPatch, config, calls: list[tuple[str, Any]]) -> SimpleNamespace:
    state = SimpleNamespace(server=object(), store=object())
    monkeypatch.setattr("snippet_server.server.configure_logging", lambda *args: None)
    monkeypatch.setattr("snippet_server.server.load_config", lambda argv: config)
    monkeypatch.setattr("snippet_server.server.initialize_app", lambda cfg: state)
    monkeypatch.setattr("snippet_server.server.run_http", lambda *args, **kwargs: calls.append(("http", args, kwargs)))
    monkeypatch.setattr("snippet_server.server.run_stdio", lambda server: calls.append(("stdio", server)))
    return state


def test_run_stdio_drives_server(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("snippet_server.transports.stdio.stdio_server", _fake_stdio_server)
    dummy = _DummyServer()

    run_stdio(dummy)

    assert dummy.calls == [("reader", "writer", "options")]


def test_run_stdio_propagates_keyboard_interrupt(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("snippet_server.transports.stdio.stdio_server", _fake_stdio_server)

    class InterruptingServer(_DummyServer):
        async def run(self, read_stream, write_stream, options) -> None:
            raise KeyboardInterrupt

    with pytest.raises(KeyboardInterrupt):
        run_stdio(InterruptingServer())


def test_main_runs_stdio_when_enabled(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    config = load_config(argv=["--enable-stdio", "true", "--storage-file", str(tmp_path / "s.json")], environ={})
    calls: list[tuple[str, Any]] = []
    state = _patch_main(monkeypatch, config, calls)

    run_main([])

    assert calls == [("stdio", state.server)]


def test_main_serves_http_with_metrics_route(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    config = load_config(
        argv=["--enable-metrics", "true", "--http-port", "3005", "--storage-file", str(tmp_path / "s.json")],
        environ={},
    )
    calls: list[tuple[str, Any]] = []
    state = _patch_main(monkeypatch, config, calls)

    run_main([])

    assert len(calls) == 1
    kind, args, kwargs = calls[0]
    assert kind == "http"
    assert args[0] is state.server
    assert args[1].port == 3005
    assert [route.path for route in kwargs["extra_routes"]] == ["/metrics"]


def test_main_exits_on_invalid_configuration(monkeypatch: pytest.MonkeyPatch) -> None:
    def broken(argv):
        raise ConfigError("bad")

    monkeypatch.setattr("snippet_server.server.configure_logging", lambda *args: None)
    monkeypatch.setattr("snippet_server.server.load_config", broken)

    with pytest.raises(SystemExit) as exc:
        run_main([])

    assert exc.value.code == 2


def test_main_exits_when_widget_assets_are_missing(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    config = load_config(
        argv=["--assets-dir", str(tmp_path / "empty"), "--storage-file", str(tmp_path / "s.json")],
        environ={},
    )
    monkeypatch.setattr("snippet_server.server.configure_logging", lambda *args: None)
    monkeypatch.setattr("snippet_server.server.load_config", lambda argv: config)
    monkeypatch.setattr("snippet_server.server.run_http", lambda *args, **kwargs: pytest.fail("should not serve"))

    with pytest.raises(SystemExit) as exc:
        run_main([])

    assert exc.value.code == 1
