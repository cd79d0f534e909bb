"""Tool and resource registries and the per-request dispatch contract."""

from __future__ import annotations

import inspect
import json
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping
from urllib.parse import unquote

from jsonschema import exceptions as jsonschema_exceptions, validators as jsonschema_validators

from . import metrics
from .errors import (
    INTERNAL_ERROR,
    UNKNOWN_TOOL,
    VALIDATION_ERROR,
    RegistrationError,
    SnippetServerError,
)
from .logging import get_logger

logger = get_logger(__name__)

Handler = Callable[..., Any]

_PLACEHOLDER_PATTERN = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


@dataclass(slots=True)
class ToolResult:
    """Uniform envelope returned by every tool invocation."""

    text: str
    structured: dict[str, Any] | None = None
    error: dict[str, Any] | None = None
    meta: dict[str, Any] | None = None

    @classmethod
    def from_error(
        cls,
        error: SnippetServerError,
        *,
        text: str | None = None,
        structured: dict[str, Any] | None = None,
    ) -> "ToolResult":
        metrics.record_error(error.code)
        return cls(text=text or error.message, structured=structured, error=error.to_dict())


@dataclass(slots=True)
class ToolSpec:
    name: str
    handler: Handler
    input_schema: dict[str, Any]
    output_schema: dict[str, Any] | None = None
    title: str | None = None
    description: str | None = None
    meta: dict[str, Any] | None = None
    _input_validator: Any = field(default=None, init=False, repr=False)
    _output_validator: Any = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self._input_validator = _compile_schema(self.input_schema, context=f"tool {self.name} input")
        if self.output_schema is not None:
            self._output_validator = _compile_schema(self.output_schema, context=f"tool {self.name} output")

    def validate_input(self, arguments: Mapping[str, Any]) -> list[str]:
        return _collect_errors(self._input_validator, arguments)

    def validate_output(self, payload: Mapping[str, Any]) -> list[str]:
        if self._output_validator is None:
            return []
        return _collect_errors(self._output_validator, payload)

    def declared_arguments(self, arguments: Mapping[str, Any]) -> dict[str, Any]:
        """Drop keys the input schema does not declare; undeclared schemas pass everything."""

        properties = self.input_schema.get("properties")
        if not isinstance(properties, Mapping):
            return dict(arguments)
        return {key: value for key, value in arguments.items() if key in properties}


@dataclass(slots=True)
class ResourceContent:
    uri: str
    text: str
    mime_type: str = "text/plain"
    meta: dict[str, Any] | None = None


@dataclass(slots=True)
class ResourceSpec:
    uri: str
    name: str
    handler: Handler
    title: str | None = None
    description: str | None = None
    mime_type: str | None = None
    meta: dict[str, Any] | None = None


@dataclass(slots=True)
class ResourceTemplateSpec:
    uri_template: str
    name: str
    handler: Handler
    title: str | None = None
    description: str | None = None
    mime_type: str | None = None
    _pattern: re.Pattern[str] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._pattern = compile_uri_template(self.uri_template)

    @property
    def parameters(self) -> list[str]:
        return _PLACEHOLDER_PATTERN.findall(self.uri_template)

    def match(self, uri: str) -> dict[str, str] | None:
        found = self._pattern.fullmatch(uri)
        if found is None:
            return None
        return {name: unquote(value) for name, value in found.groupdict().items()}


def compile_uri_template(template: str) -> re.Pattern[str]:
    """Translate ``scheme://{a}/path/{b}`` into a regex with one group per placeholder.

    A placeholder matches a single non-empty segment (no ``/``).
    """

    parts: list[str] = []
    seen: set[str] = set()
    position = 0
    for placeholder in _PLACEHOLDER_PATTERN.finditer(template):
        name = placeholder.group(1)
        if name in seen:
            raise RegistrationError(INTERNAL_ERROR, f"Placeholder {name!r} repeated in {template!r}")
        seen.add(name)
        parts.append(re.escape(template[position : placeholder.start()]))
        parts.append(f"(?P<{name}>[^/]+)")
        position = placeholder.end()
    parts.append(re.escape(template[position:]))
    return re.compile("".join(parts))


def _compile_schema(schema: Mapping[str, Any], *, context: str) -> Any:
    validator_cls = jsonschema_validators.validator_for(schema)
    try:
        validator_cls.check_schema(schema)
    except jsonschema_exceptions.SchemaError as exc:
        raise RegistrationError(INTERNAL_ERROR, f"Invalid JSON schema for {context}") from exc
    return validator_cls(schema)


def _collect_errors(validator: Any, instance: Any) -> list[str]:
    messages: list[str] = []
    for error in sorted(validator.iter_errors(instance), key=lambda err: [str(part) for part in err.absolute_path]):
        location = "/".join(str(part) for part in error.absolute_path)
        messages.append(f"{location}: {error.message}" if location else error.message)
    return messages


async def _call_handler(handler: Handler, kwargs: Mapping[str, Any]) -> Any:
    result = handler(**kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result


class ToolRegistry:
    """Name -> tool mapping, populated at startup and read-only afterwards."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def register(self, spec: ToolSpec) -> ToolSpec:
        if spec.name in self._tools:
            raise RegistrationError(INTERNAL_ERROR, f"Tool {spec.name!r} is already registered")
        self._tools[spec.name] = spec
        logger.debug("tool.register", extra={"context": {"name": spec.name}})
        return spec

    def tool(
        self,
        name: str,
        *,
        input_schema: dict[str, Any],
        output_schema: dict[str, Any] | None = None,
        title: str | None = None,
        description: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> Callable[[Handler], Handler]:
        """Decorator form of :meth:`register`; returns the handler unchanged."""

        def decorator(handler: Handler) -> Handler:
            self.register(
                ToolSpec(
                    name=name,
                    handler=handler,
                    input_schema=input_schema,
                    output_schema=output_schema,
                    title=title,
                    description=description or inspect.getdoc(handler),
                    meta=meta,
                )
            )
            return handler

        return decorator

    def get(self, name: str) -> ToolSpec | None:
        return self._tools.get(name)

    def list(self) -> list[ToolSpec]:
        return list(self._tools.values())

    async def invoke(self, name: str, arguments: Mapping[str, Any] | None = None) -> ToolResult:
        """Validate ``arguments`` against the tool's schema, run it and wrap the result.

        Raises :class:`SnippetServerError` with ``UNKNOWN_TOOL`` or
        ``VALIDATION_ERROR`` before the handler is touched.
        """

        spec = self._tools.get(name)
        if spec is None:
            metrics.record_error(UNKNOWN_TOOL)
            raise SnippetServerError(UNKNOWN_TOOL, f"Tool {name} not found", details={"tool": name})

        payload = dict(arguments or {})
        problems = spec.validate_input(payload)
        if problems:
            metrics.record_error(VALIDATION_ERROR)
            logger.info("tool.invoke.rejected", extra={"context": {"tool": name, "errors": problems}})
            raise SnippetServerError(
                VALIDATION_ERROR,
                f"Invalid arguments for tool {name}: {'; '.join(problems)}",
                details={"tool": name, "errors": problems},
            )

        logger.debug("tool.invoke", extra={"context": {"tool": name}})
        raw = await _call_handler(spec.handler, spec.declared_arguments(payload))
        result = self._normalize(spec, raw)
        metrics.record_operation(name)
        return result

    @staticmethod
    def _normalize(spec: ToolSpec, raw: Any) -> ToolResult:
        if isinstance(raw, ToolResult):
            result = raw
        elif isinstance(raw, Mapping):
            structured = dict(raw)
            result = ToolResult(text=json.dumps(structured, ensure_ascii=False), structured=structured)
        elif isinstance(raw, str):
            result = ToolResult(text=raw)
        else:
            raise SnippetServerError(
                INTERNAL_ERROR,
                f"Tool {spec.name} returned unsupported result type {type(raw).__name__}",
            )

        if spec.output_schema is not None:
            if result.structured is None:
                raise SnippetServerError(INTERNAL_ERROR, f"Tool {spec.name} declares an output schema but returned no structured content")
            problems = spec.validate_output(result.structured)
            if problems:
                raise SnippetServerError(
                    INTERNAL_ERROR,
                    f"Tool {spec.name} returned output that does not match its schema",
                    details={"errors": problems},
                )
        return result


class ResourceRegistry:
    """Static URIs and URI templates mapped to content handlers."""

    def __init__(self) -> None:
        self._static: dict[str, ResourceSpec] = {}
        self._templates: dict[str, ResourceTemplateSpec] = {}

    def register_static(self, spec: ResourceSpec) -> ResourceSpec:
        if spec.uri in self._static:
            raise RegistrationError(INTERNAL_ERROR, f"Resource {spec.uri!r} is already registered")
        self._static[spec.uri] = spec
        logger.debug("resource.register", extra={"context": {"uri": spec.uri}})
        return spec

    def register_template(self, spec: ResourceTemplateSpec) -> ResourceTemplateSpec:
        if spec.uri_template in self._templates:
            raise RegistrationError(INTERNAL_ERROR, f"Resource template {spec.uri_template!r} is already registered")
        self._templates[spec.uri_template] = spec
        logger.debug("resource.register_template", extra={"context": {"uri_template": spec.uri_template}})
        return spec

    def resource(
        self,
        uri: str,
        *,
        name: str,
        title: str | None = None,
        description: str | None = None,
        mime_type: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> Callable[[Handler], Handler]:
        def decorator(handler: Handler) -> Handler:
            self.register_static(
                ResourceSpec(
                    uri=uri,
                    name=name,
                    handler=handler,
                    title=title,
                    description=description,
                    mime_type=mime_type,
                    meta=meta,
                )
            )
            return handler

        return decorator

    def template(
        self,
        uri_template: str,
        *,
        name: str,
        title: str | None = None,
        description: str | None = None,
        mime_type: str | None = None,
    ) -> Callable[[Handler], Handler]:
        def decorator(handler: Handler) -> Handler:
            self.register_template(
                ResourceTemplateSpec(
                    uri_template=uri_template,
                    name=name,
                    handler=handler,
                    title=title,
                    description=description,
                    mime_type=mime_type,
                )
            )
            return handler

        return decorator

    def list_static(self) -> list[ResourceSpec]:
        return list(self._static.values())

    def list_templates(self) -> list[ResourceTemplateSpec]:
        return list(self._templates.values())

    async def resolve(self, uri: str) -> ResourceContent | None:
        """Return the content for ``uri`` or ``None`` when nothing matches.

        Static URIs win over templates; templates are tried in registration order.
        """

        spec = self._static.get(uri)
        if spec is None and uri.endswith("/"):
            spec = self._static.get(uri.rstrip("/"))
        if spec is not None:
            raw = await _call_handler(spec.handler, {})
            return _normalize_content(raw, uri=uri, mime_type=spec.mime_type, meta=spec.meta)

        for template in self._templates.values():
            params = template.match(uri)
            if params is None:
                continue
            raw = await _call_handler(template.handler, params)
            return _normalize_content(raw, uri=uri, mime_type=template.mime_type, meta=None)

        return None


def _normalize_content(raw: Any, *, uri: str, mime_type: str | None, meta: dict[str, Any] | None) -> ResourceContent:
    if isinstance(raw, ResourceContent):
        return raw
    if isinstance(raw, str):
        return ResourceContent(uri=uri, text=raw, mime_type=mime_type or "text/plain", meta=meta)
    raise SnippetServerError(INTERNAL_ERROR, f"Resource {uri} returned unsupported content type {type(raw).__name__}")
