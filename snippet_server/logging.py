"""Logging setup for the snippet server.

Records go to stderr through FastMCP's rich handler, leaving stdout to the
stdio transport's protocol frames. Modules log dotted event names such as
``store.create`` or ``transport.http.session.open`` and attach structured
fields with ``extra={"context": {...}}``; :class:`ContextFilter` appends those
fields to the rendered line as ``key=value`` pairs.
"""

from __future__ import annotations

import logging
from typing import Any, Literal, Mapping

from fastmcp.utilities.logging import configure_logging as _fastmcp_configure_logging

ROOT_LOGGER = "snippet_server"

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

_configured = False


class ContextFilter(logging.Filter):
    """Fold ``record.context`` into the message once per record."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = getattr(record, "context", None)
        if isinstance(context, Mapping) and context and not getattr(record, "context_rendered", False):
            record.msg = f"{record.getMessage()} {render_context(context)}"
            record.args = ()
            record.context_rendered = True
        return True


def render_context(context: Mapping[str, Any]) -> str:
    pairs: list[str] = []
    for key, value in context.items():
        # Quote strings with spaces so pairs stay splittable.
        rendered = repr(value) if isinstance(value, str) and " " in value else str(value)
        pairs.append(f"{key}={rendered}")
    return " ".join(pairs)


def configure_logging(level: LogLevel | int = "INFO", **rich_kwargs: Any) -> logging.Logger:
    """Install the stderr handler on the package logger and return it."""

    global _configured

    package_logger = logging.getLogger(ROOT_LOGGER)
    _fastmcp_configure_logging(level=level, logger=package_logger, **rich_kwargs)
    for handler in package_logger.handlers:
        if not any(isinstance(existing, ContextFilter) for existing in handler.filters):
            handler.addFilter(ContextFilter())

    _configured = True
    return package_logger


def get_logger(name: str | None = None) -> logging.Logger:
    if not _configured:
        configure_logging()
    if not name or name == ROOT_LOGGER:
        return logging.getLogger(ROOT_LOGGER)
    if name.startswith(ROOT_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
