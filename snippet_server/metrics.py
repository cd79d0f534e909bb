from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from threading import RLock
from time import monotonic
from typing import Mapping

_DEFAULT_TOOLS = ("create_snippet", "get_snippets", "update_snippet", "delete_snippet")

_registry_lock = RLock()
_registry: "MetricsRegistry | None" = None


@dataclass(frozen=True)
class MetricsSnapshot:
    """Immutable snapshot of the current metrics state."""

    tool_calls: Mapping[str, int]
    errors: Mapping[str, int]
    sessions: int
    uptime_seconds: float


class MetricsRegistry:
    """Thread-safe registry storing counters for Prometheus export."""

    __slots__ = ("_tool_calls", "_errors", "_sessions", "_lock", "_started_at")

    def __init__(self) -> None:
        self._tool_calls: Counter[str] = Counter()
        self._errors: Counter[str] = Counter()
        self._sessions = 0
        self._lock = RLock()
        self._started_at = monotonic()

    def record_operation(self, name: str, *, count: int = 1) -> None:
        if count <= 0:
            return
        key = name.strip()
        if not key:
            return
        with self._lock:
            self._tool_calls[key] += count

    def record_error(self, code: str, *, count: int = 1) -> None:
        if count <= 0:
            return
        key = code.strip().upper()
        if not key:
            return
        with self._lock:
            self._errors[key] += count

    def record_session(self) -> None:
        with self._lock:
            self._sessions += 1

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            tool_calls: dict[str, int] = {name: int(self._tool_calls.get(name, 0)) for name in _DEFAULT_TOOLS}
            for name, value in self._tool_calls.items():
                if name not in tool_calls:
                    tool_calls[name] = int(value)
            errors = {code: int(value) for code, value in self._errors.items()}
            uptime = max(monotonic() - self._started_at, 0.0)
            sessions = self._sessions
        return MetricsSnapshot(tool_calls=tool_calls, errors=errors, sessions=sessions, uptime_seconds=uptime)

    def reset(self) -> None:
        with self._lock:
            self._tool_calls.clear()
            self._errors.clear()
            self._sessions = 0
            self._started_at = monotonic()


def install_registry(registry: MetricsRegistry | None) -> None:
    """Install the active metrics registry (or disable metrics when None)."""

    with _registry_lock:
        global _registry
        _registry = registry


def get_registry_optional() -> MetricsRegistry | None:
    with _registry_lock:
        return _registry


def record_operation(name: str, *, count: int = 1) -> None:
    registry = get_registry_optional()
    if registry is not None:
        registry.record_operation(name, count=count)


def record_error(code: str, *, count: int = 1) -> None:
    registry = get_registry_optional()
    if registry is not None:
        registry.record_error(code, count=count)


def record_session() -> None:
    registry = get_registry_optional()
    if registry is not None:
        registry.record_session()


def format_prometheus(snapshot: MetricsSnapshot, *, snippets_current: int) -> str:
    """Render metrics using Prometheus exposition format (text, version 0.0.4)."""

    lines: list[str] = []

    lines.append("# HELP snippet_server_tool_calls_total Successful tool invocations by tool name.")
    lines.append("# TYPE snippet_server_tool_calls_total counter")
    for name in sorted(snapshot.tool_calls):
        value = snapshot.tool_calls[name]
        lines.append(f'snippet_server_tool_calls_total{{tool="{name}"}} {value}')

    lines.append("# HELP snippet_server_errors_total Total errors returned, grouped by error code.")
    lines.append("# TYPE snippet_server_errors_total counter")
    if snapshot.errors:
        for code in sorted(snapshot.errors):
            value = snapshot.errors[code]
            lines.append(f'snippet_server_errors_total{{code="{code}"}} {value}')
    else:
        lines.append('snippet_server_errors_total{code="none"} 0')

    lines.append("# HELP snippet_server_sessions_total HTTP request sessions opened.")
    lines.append("# TYPE snippet_server_sessions_total counter")
    lines.append(f"snippet_server_sessions_total {snapshot.sessions}")

    lines.append("# HELP snippet_server_snippets_current Current snippet count across all owners.")
    lines.append("# TYPE snippet_server_snippets_current gauge")
    lines.append(f"snippet_server_snippets_current {snippets_current}")

    lines.append("# HELP snippet_server_uptime_seconds Server uptime in seconds.")
    lines.append("# TYPE snippet_server_uptime_seconds gauge")
    lines.append(f"snippet_server_uptime_seconds {snapshot.uptime_seconds:.6f}")

    return "\n".join(lines) + "\n"
