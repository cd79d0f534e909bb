"""Resource declarations: demo text resources and the widget documents."""

from __future__ import annotations

from typing import Any, Mapping

from .registry import ResourceContent, ResourceRegistry
from .widgets import WIDGET_MIME_TYPE, WidgetAssets, WidgetDefinition, render_widget_html


def register_demo_resources(registry: ResourceRegistry) -> None:
    @registry.resource(
        "config://app",
        name="config",
        title="Application Config",
        description="Application configuration data",
        mime_type="text/plain",
    )
    def app_config() -> str:
        return "App configuration here"

    @registry.template(
        "greeting://{name}",
        name="greeting",
        title="Greeting Resource",
        description="Dynamic greeting generator",
    )
    def greeting(name: str) -> str:
        return f"Hello, {name}!"

    @registry.template(
        "users://{userId}/profile",
        name="user-profile",
        title="User Profile",
        description="User profile information",
    )
    def user_profile(userId: str) -> str:
        return f"Profile data for user {userId}"


def register_widget_resource(
    registry: ResourceRegistry,
    widget: WidgetDefinition,
    assets: WidgetAssets,
    *,
    meta: Mapping[str, Any],
) -> None:
    # Assembled once; every read returns the same document.
    document = render_widget_html(assets)
    resource_meta = dict(meta)

    def widget_document() -> ResourceContent:
        return ResourceContent(
            uri=widget.uri,
            text=document,
            mime_type=WIDGET_MIME_TYPE,
            meta=resource_meta,
        )

    registry.resource(
        widget.uri,
        name=f"{widget.name}-widget",
        title=widget.title,
        mime_type=WIDGET_MIME_TYPE,
        meta=resource_meta,
    )(widget_document)
