"""Widget assets and the inline HTML documents served to the host."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

from .config import Config, ConfigError
from .logging import get_logger

logger = get_logger(__name__)

WIDGET_MIME_TYPE = "text/html+skybridge"

_DOCUMENT_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
  <head>
    <meta charset="UTF-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1.0" />
    <title>{title}</title>
    <script type="module">{script}</script>
    <style>{style}</style>
  </head>
  <body>
    <div id="root"></div>
  </body>
</html>
"""


@dataclass(frozen=True, slots=True)
class WidgetDefinition:
    name: str
    tool_name: str
    title: str
    invoking: str
    invoked: str
    acknowledgement: str

    @property
    def uri(self) -> str:
        return f"ui://widget/{self.name}.html"


@dataclass(frozen=True, slots=True)
class WidgetAssets:
    script: str
    style: str = ""


KANBAN_BOARD = WidgetDefinition(
    name="kanban-board",
    tool_name="kanban-board",
    title="Show Kanban Board",
    invoking="Displaying the board",
    invoked="Displayed the board",
    acknowledgement="Displayed the kanban board!",
)

SNIPPET_BOARD = WidgetDefinition(
    name="snippet-board",
    tool_name="snippet-board",
    title="Show Snippet Board",
    invoking="Loading your snippets",
    invoked="Displayed your snippets",
    acknowledgement="Displayed the snippet board!",
)

WIDGETS: tuple[WidgetDefinition, ...] = (KANBAN_BOARD, SNIPPET_BOARD)


def load_widget_assets(assets_dir: Path, widget: WidgetDefinition) -> WidgetAssets:
    """Read ``<name>.js`` (required) and ``<name>.css`` (optional) from ``assets_dir``."""

    script_path = assets_dir / f"{widget.name}.js"
    style_path = assets_dir / f"{widget.name}.css"
    try:
        script = script_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Widget script not found: {script_path}") from exc
    try:
        style = style_path.read_text(encoding="utf-8")
    except OSError:
        style = ""
    logger.debug(
        "widget.assets.loaded",
        extra={"context": {"widget": widget.name, "script_bytes": len(script), "style_bytes": len(style)}},
    )
    return WidgetAssets(script=script, style=style)


def render_widget_html(assets: WidgetAssets, *, title: str = "web-app") -> str:
    return _DOCUMENT_TEMPLATE.format(title=title, script=assets.script, style=assets.style)


def widget_resource_meta(
    *,
    domain: str,
    connect_domains: Sequence[str],
    resource_domains: Sequence[str],
    prefers_border: bool = True,
) -> dict[str, Any]:
    """Metadata the host uses to sandbox, frame and restrict the widget iframe."""

    return {
        "openai/widgetPrefersBorder": prefers_border,
        "openai/widgetDomain": domain,
        "openai/widgetCSP": {
            "connect_domains": list(connect_domains),
            "resource_domains": list(resource_domains),
        },
    }


def widget_tool_meta(widget: WidgetDefinition) -> dict[str, Any]:
    return {
        "openai/outputTemplate": widget.uri,
        "openai/toolInvocation/invoking": widget.invoking,
        "openai/toolInvocation/invoked": widget.invoked,
    }


def resource_meta_from_config(config: Config) -> dict[str, Any]:
    return widget_resource_meta(
        domain=config.widget_domain,
        connect_domains=config.widget_connect_domains,
        resource_domains=config.widget_resource_domains,
    )
