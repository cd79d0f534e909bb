"""Snippet MCP server package."""

__version__ = "1.0.0"

from .config import Config, load_config
from .logging import configure_logging
from .server import create_server, initialize_app, main

__all__ = [
    "__version__",
    "Config",
    "load_config",
    "configure_logging",
    "create_server",
    "initialize_app",
    "main",
]
