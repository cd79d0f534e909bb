"""Configuration loading utilities for the snippet server."""

from __future__ import annotations

import argparse
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, MutableMapping, Sequence

ENV_PREFIX = "SNIPPET_SERVER_"
PORT_ENV = "PORT"

BOOL_TRUE = {"1", "true", "t", "yes", "y", "on"}
BOOL_FALSE = {"0", "false", "f", "no", "n", "off"}
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

DEFAULT_HTTP_HOST = "127.0.0.1"
DEFAULT_HTTP_PORT = 3000
DEFAULT_HTTP_PATH = "/mcp"
DEFAULT_METRICS_PATH = "/metrics"
DEFAULT_STORAGE_FILENAME = "snippets.json"
DEFAULT_OWNER_ID = "user123"
DEFAULT_WIDGET_DOMAIN = "https://chatgpt.com"
DEFAULT_WIDGET_CONNECT_DOMAINS = ("https://chatgpt.com",)
DEFAULT_WIDGET_RESOURCE_DOMAINS = ("https://*.oaistatic.com",)
PACKAGED_ASSETS_DIR = Path(__file__).resolve().parent / "assets"


def _default_storage_file() -> Path:
    """Return the default snippet document path under the current working directory."""

    return (Path.cwd() / DEFAULT_STORAGE_FILENAME).resolve()


DEFAULT_STORAGE_FILE = _default_storage_file()

ENV_FIELD_MAP = {
    "config_file": f"{ENV_PREFIX}CONFIG_FILE",
    "storage_file": f"{ENV_PREFIX}STORAGE_FILE",
    "assets_dir": f"{ENV_PREFIX}ASSETS_DIR",
    "owner_id": f"{ENV_PREFIX}OWNER_ID",
    "enable_http": f"{ENV_PREFIX}ENABLE_HTTP",
    "enable_stdio": f"{ENV_PREFIX}ENABLE_STDIO",
    "enable_metrics": f"{ENV_PREFIX}ENABLE_METRICS",
    "json_response": f"{ENV_PREFIX}JSON_RESPONSE",
    "http_host": f"{ENV_PREFIX}HTTP_HOST",
    "http_port": f"{ENV_PREFIX}HTTP_PORT",
    "http_path": f"{ENV_PREFIX}HTTP_PATH",
    "metrics_path": f"{ENV_PREFIX}METRICS_PATH",
    "log_level": f"{ENV_PREFIX}LOG_LEVEL",
    "widget_domain": f"{ENV_PREFIX}WIDGET_DOMAIN",
    "widget_connect_domains": f"{ENV_PREFIX}WIDGET_CONNECT_DOMAINS",
    "widget_resource_domains": f"{ENV_PREFIX}WIDGET_RESOURCE_DOMAINS",
}

DEFAULT_VALUES: dict[str, Any] = {
    "config_file": None,
    "storage_file": str(DEFAULT_STORAGE_FILE),
    "assets_dir": str(PACKAGED_ASSETS_DIR),
    "owner_id": DEFAULT_OWNER_ID,
    "enable_http": True,
    "enable_stdio": False,
    "enable_metrics": False,
    "json_response": True,
    "http_host": DEFAULT_HTTP_HOST,
    "http_port": DEFAULT_HTTP_PORT,
    "http_path": DEFAULT_HTTP_PATH,
    "metrics_path": DEFAULT_METRICS_PATH,
    "log_level": "INFO",
    "widget_domain": DEFAULT_WIDGET_DOMAIN,
    "widget_connect_domains": DEFAULT_WIDGET_CONNECT_DOMAINS,
    "widget_resource_domains": DEFAULT_WIDGET_RESOURCE_DOMAINS,
}


class ConfigError(ValueError):
    """Raised when configuration values are invalid."""


@dataclass(slots=True)
class Config:
    """Configuration model for the snippet server."""

    storage_file: Path
    assets_dir: Path
    owner_id: str
    enable_http: bool
    enable_stdio: bool
    enable_metrics: bool
    json_response: bool
    http_host: str
    http_port: int
    http_path: str
    metrics_path: str
    log_level: str
    widget_domain: str
    widget_connect_domains: tuple[str, ...]
    widget_resource_domains: tuple[str, ...]
    config_file: Path | None = None


def load_config(
    argv: Sequence[str] | None = None,
    environ: Mapping[str, str] | None = None,
) -> Config:
    """Load configuration from CLI arguments, environment variables, and optional file.

    Precedence, lowest first: defaults, config file, ``PORT``,
    ``SNIPPET_SERVER_*`` variables, CLI flags.
    """

    parser = _build_arg_parser()
    parsed = parser.parse_args(argv)
    cli_values = {k: v for k, v in vars(parsed).items() if v is not None}

    env = os.environ if environ is None else environ
    env_values = _extract_env_values(env)

    config_path_value = cli_values.get("config_file") or env_values.get("config_file")
    file_values = _load_config_file(config_path_value)

    merged: dict[str, Any] = {}
    _merge_layer(merged, DEFAULT_VALUES)
    _merge_layer(merged, file_values)
    if PORT_ENV in env:
        merged["http_port"] = env[PORT_ENV]
    _merge_layer(merged, env_values)
    _merge_layer(merged, cli_values)

    config = _normalize_values(merged, config_path_value)

    _maybe_write_config_file(config)
    return config


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="snippet-server",
        description="Snippet MCP server configuration flags.",
        add_help=False,
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument("-h", "--help", action="help", help="Show this help message and exit.")
    parser.add_argument(
        "--config-file",
        dest="config_file",
        metavar="PATH",
        help="Path to a JSON configuration file (created with effective values when missing). Default: none.",
    )
    parser.add_argument(
        "--storage-file",
        dest="storage_file",
        metavar="PATH",
        help=f"JSON document holding the snippets (default: {DEFAULT_STORAGE_FILE}).",
    )
    parser.add_argument(
        "--assets-dir",
        dest="assets_dir",
        metavar="PATH",
        help="Directory containing <widget>.js and optional <widget>.css bundles (default: packaged assets).",
    )
    parser.add_argument(
        "--owner-id",
        dest="owner_id",
        metavar="ID",
        help=f"Principal every snippet is scoped to (default: {DEFAULT_OWNER_ID}).",
    )

    parser.add_argument(
        "--enable-http",
        dest="enable_http",
        metavar="BOOL",
        help="Enable the MCP streamable HTTP endpoint (default: true).",
    )
    parser.add_argument(
        "--enable-stdio",
        dest="enable_stdio",
        metavar="BOOL",
        help="Serve over stdio instead of HTTP (default: false).",
    )
    parser.add_argument(
        "--enable-metrics",
        dest="enable_metrics",
        metavar="BOOL",
        help="Expose Prometheus metrics on the HTTP listener (requires --enable-http true; default: false).",
    )
    parser.add_argument(
        "--json-response",
        dest="json_response",
        metavar="BOOL",
        help="Answer with a single JSON document instead of an SSE stream (default: true).",
    )

    parser.add_argument(
        "--http-host",
        dest="http_host",
        metavar="HOST",
        help=f"HTTP listener host (default: {DEFAULT_HTTP_HOST}).",
    )
    parser.add_argument(
        "--http-port",
        dest="http_port",
        metavar="PORT",
        help=f"HTTP listener port; also read from ${PORT_ENV} (default: {DEFAULT_HTTP_PORT}).",
    )
    parser.add_argument(
        "--http-path",
        dest="http_path",
        metavar="PATH",
        help=f"HTTP path for MCP requests (default: {DEFAULT_HTTP_PATH}).",
    )
    parser.add_argument(
        "--metrics-path",
        dest="metrics_path",
        metavar="PATH",
        help=f"Metrics endpoint path (default: {DEFAULT_METRICS_PATH}).",
    )
    parser.add_argument("--log-level", dest="log_level", metavar="LEVEL", help="Log level (default: INFO).")

    parser.add_argument(
        "--widget-domain",
        dest="widget_domain",
        metavar="URL",
        help=f"Sandbox domain advertised for widget HTML (default: {DEFAULT_WIDGET_DOMAIN}).",
    )
    parser.add_argument(
        "--widget-connect-domain",
        dest="widget_connect_domains",
        action="append",
        metavar="URL",
        help="Domain widgets may fetch from (may be repeated).",
    )
    parser.add_argument(
        "--widget-resource-domain",
        dest="widget_resource_domains",
        action="append",
        metavar="URL",
        help="Domain widgets may load styles, fonts and images from (may be repeated).",
    )

    return parser


def _extract_env_values(env: Mapping[str, str]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for field, env_name in ENV_FIELD_MAP.items():
        if env_name in env:
            values[field] = env[env_name]
    return values


def _load_config_file(path_value: str | Path | None) -> dict[str, Any]:
    if not path_value:
        return {}
    path = _parse_path(path_value, field="config_file")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Config file is not valid JSON: {path}") from exc
    if not isinstance(data, dict):
        raise ConfigError("Config file must contain a JSON object")
    result: dict[str, Any] = {k: v for k, v in data.items() if k in DEFAULT_VALUES}
    result["config_file"] = str(path)
    return result


def _merge_layer(base: MutableMapping[str, Any], overrides: Mapping[str, Any]) -> None:
    for key, value in overrides.items():
        if value is None:
            continue
        base[key] = value


def _normalize_values(values: Mapping[str, Any], config_path_value: str | Path | None) -> Config:
    storage_file = _parse_path(values["storage_file"], field="storage_file")
    assets_dir = _parse_path(values["assets_dir"], field="assets_dir")

    owner_id = str(values.get("owner_id", DEFAULT_OWNER_ID)).strip()
    if not owner_id:
        raise ConfigError("owner_id may not be empty")

    enable_http = _parse_bool(values.get("enable_http"), default=DEFAULT_VALUES["enable_http"])
    enable_stdio = _parse_bool(values.get("enable_stdio"), default=DEFAULT_VALUES["enable_stdio"])
    enable_metrics = _parse_bool(values.get("enable_metrics"), default=DEFAULT_VALUES["enable_metrics"])
    json_response = _parse_bool(values.get("json_response"), default=DEFAULT_VALUES["json_response"])
    if not (enable_http or enable_stdio):
        raise ConfigError("At least one of enable_http or enable_stdio must be true")
    if enable_metrics and not enable_http:
        raise ConfigError("enable_metrics requires enable_http to be true")

    http_host = str(values.get("http_host", DEFAULT_VALUES["http_host"]))
    http_port = _parse_int(values.get("http_port", DEFAULT_VALUES["http_port"]), field="http_port", minimum=0, maximum=65535)
    http_path = _parse_route(values.get("http_path", DEFAULT_VALUES["http_path"]), field="http_path")
    metrics_path = _parse_route(values.get("metrics_path", DEFAULT_VALUES["metrics_path"]), field="metrics_path")
    if enable_metrics and http_path == metrics_path:
        raise ConfigError("http_path and metrics_path must be distinct")

    log_level = str(values.get("log_level", DEFAULT_VALUES["log_level"])).strip().upper()
    if log_level not in LOG_LEVELS:
        raise ConfigError(f"log_level must be one of: {', '.join(LOG_LEVELS)}")

    widget_domain = str(values.get("widget_domain", DEFAULT_WIDGET_DOMAIN)).strip()
    widget_connect_domains = _parse_domains(values.get("widget_connect_domains"), field="widget_connect_domains")
    widget_resource_domains = _parse_domains(values.get("widget_resource_domains"), field="widget_resource_domains")

    config_file_path = _parse_optional_path(config_path_value, field="config_file")

    return Config(
        storage_file=storage_file,
        assets_dir=assets_dir,
        owner_id=owner_id,
        enable_http=enable_http,
        enable_stdio=enable_stdio,
        enable_metrics=enable_metrics,
        json_response=json_response,
        http_host=http_host,
        http_port=http_port,
        http_path=http_path,
        metrics_path=metrics_path,
        log_level=log_level,
        widget_domain=widget_domain,
        widget_connect_domains=widget_connect_domains,
        widget_resource_domains=widget_resource_domains,
        config_file=config_file_path,
    )


def _maybe_write_config_file(config: Config) -> None:
    path = config.config_file
    if path is None:
        return

    path.parent.mkdir(parents=True, exist_ok=True)
    if path.exists():
        return

    payload = _serialize_config(config)
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")


def _serialize_config(config: Config) -> dict[str, Any]:
    return {
        "storage_file": str(config.storage_file),
        "assets_dir": str(config.assets_dir),
        "owner_id": config.owner_id,
        "enable_http": config.enable_http,
        "enable_stdio": config.enable_stdio,
        "enable_metrics": config.enable_metrics,
        "json_response": config.json_response,
        "http_host": config.http_host,
        "http_port": config.http_port,
        "http_path": config.http_path,
        "metrics_path": config.metrics_path,
        "log_level": config.log_level,
        "widget_domain": config.widget_domain,
        "widget_connect_domains": list(config.widget_connect_domains),
        "widget_resource_domains": list(config.widget_resource_domains),
    }


def _parse_bool(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in BOOL_TRUE:
            return True
        if lowered in BOOL_FALSE:
            return False
    raise ConfigError(f"Invalid boolean value: {value!r}")


def _parse_int(value: Any, *, field: str, minimum: int | None = None, maximum: int | None = None) -> int:
    try:
        if isinstance(value, (int, float)):
            int_value = int(value)
        else:
            int_value = int(str(value).strip())
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid integer for {field}: {value!r}") from exc

    if minimum is not None and int_value < minimum:
        raise ConfigError(f"{field} must be >= {minimum}")
    if maximum is not None and int_value > maximum:
        raise ConfigError(f"{field} must be <= {maximum}")
    return int_value


def _parse_route(value: Any, *, field: str) -> str:
    if not isinstance(value, str):
        raise ConfigError(f"Invalid path for {field}: {value!r}")
    path = value.strip()
    if not path:
        raise ConfigError(f"{field} may not be empty")
    if not path.startswith("/"):
        path = "/" + path
    if len(path) > 1 and path.endswith("/"):
        path = path.rstrip("/")
    return path


def _parse_domains(value: Any, *, field: str) -> tuple[str, ...]:
    if value is None:
        return tuple(DEFAULT_VALUES[field])
    if isinstance(value, str):
        items = [item.strip() for item in value.split(",")]
    elif isinstance(value, Sequence):
        items = []
        for item in value:
            if not isinstance(item, str):
                raise ConfigError(f"{field} must contain only strings")
            items.append(item.strip())
    else:
        raise ConfigError(f"{field} must be a comma separated string or an array of strings")
    return tuple(item for item in items if item)


def _parse_path(value: Any, *, field: str) -> Path:
    if isinstance(value, Path):
        return value.expanduser().resolve()
    if not isinstance(value, str):
        raise ConfigError(f"Invalid path for {field}: {value!r}")
    stripped = value.strip()
    if not stripped:
        raise ConfigError(f"{field} may not be empty")
    return Path(stripped).expanduser().resolve()


def _parse_optional_path(value: Any, *, field: str) -> Path | None:
    if value in (None, ""):
        return None
    return _parse_path(value, field=field)
