"""Transport scaffolding for the snippet server."""

from __future__ import annotations

from .http import HttpTransportConfig, build_http_app, run_http
from .stdio import run_stdio

__all__ = [
    "HttpTransportConfig",
    "build_http_app",
    "run_http",
    "run_stdio",
]
