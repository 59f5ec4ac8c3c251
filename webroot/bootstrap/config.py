"""Server configuration: built-in defaults, JSON config file and CLI flags."""

import argparse
import json
import logging
import os
import types
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from webroot.domain.correlation_id import CorrelationLoggerAdapter

CONFIG_LOGGER = CorrelationLoggerAdapter(logging.getLogger("webroot.config"), {})


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value is not None else default


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return value if value else default


MAX_BODY_BYTES = _env_int("WEBROOT_MAX_BODY_BYTES", 16 * 1024 * 1024)
DEFAULT_SOCKET_TIMEOUT = _env_int("WEBROOT_SOCKET_TIMEOUT", 60)
SHUTDOWN_GRACE_SECONDS = 5

HEADER_DELIMITER = b"\r\n\r\n"

DEFAULT_CONFIG_PATH = "config.json"
DEFAULT_HOMEDIR = "./public"
DEFAULT_PORT = 80
DEFAULT_NOT_FOUND_PAGE = "./public/404.html"
DEFAULT_INTERNAL_ERROR_PAGE = "./public/500.html"
DEFAULT_INDEXES = ("index.html", "index.htm")
DEFAULT_ACCESS_LOG = "access.log"
DEFAULT_ERROR_LOG = "error.log"
DEFAULT_HANDLER_LOG = "handler.log"
DEFAULT_DIRLIST_TEMPLATE = "html/dirlist.html"


@dataclass(frozen=True)
class HandlerDescriptor:
    """External command bound to a file extension."""

    command: str
    args: tuple[str, ...] = ()


@dataclass(frozen=True)
class ErrorPages:
    """Paths of the custom error pages."""

    not_found: str = DEFAULT_NOT_FOUND_PAGE
    internal: str = DEFAULT_INTERNAL_ERROR_PAGE


@dataclass(frozen=True)
class ServerConfig:
    """Read-only server configuration shared by every worker thread."""

    # pylint: disable=too-many-instance-attributes
    homedir: str = DEFAULT_HOMEDIR
    port: int = DEFAULT_PORT
    host: str = ""
    error_pages: ErrorPages = field(default_factory=ErrorPages)
    default_indexes: tuple[str, ...] = DEFAULT_INDEXES
    handlers: Mapping[str, HandlerDescriptor] = field(
        default_factory=lambda: types.MappingProxyType({})
    )
    access_log: str = DEFAULT_ACCESS_LOG
    error_log: str = DEFAULT_ERROR_LOG
    handler_log: str = DEFAULT_HANDLER_LOG
    dirlist_template: str = DEFAULT_DIRLIST_TEMPLATE
    socket_timeout: int = DEFAULT_SOCKET_TIMEOUT


def parse_cli_args(argv: list[str]) -> argparse.Namespace:
    """Return parsed CLI arguments for server configuration."""
    parser = argparse.ArgumentParser(
        description="Static file server with CGI-style handlers"
    )
    parser.add_argument(
        "-config", "--config", default=DEFAULT_CONFIG_PATH, help="Path to config file"
    )
    parser.add_argument(
        "-homedir",
        "--homedir",
        default=None,
        help="Directory to serve static files from",
    )
    parser.add_argument(
        "-port", "--port", type=int, default=None, help="Port to serve HTTP on"
    )
    parser.add_argument(
        "--host", default="", help="Address to bind (default: all interfaces)"
    )
    default_log_level = os.getenv("WEBROOT_LOG_LEVEL", "INFO").upper()
    default_destination = _env_str("WEBROOT_LOG_DESTINATION", "stdout")
    parser.add_argument(
        "--log-level",
        default=default_log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
    )
    parser.add_argument(
        "--log-destination",
        default=default_destination,
        help="stdout or a file path for the diagnostic log",
    )
    parser.add_argument(
        "--socket-timeout",
        type=int,
        default=DEFAULT_SOCKET_TIMEOUT,
        help="Idle socket timeout in seconds for client connections",
    )
    return parser.parse_args(argv)


def load_config_file(path: str) -> Optional[dict[str, Any]]:
    """Read the JSON config file, returning None when it cannot be used."""
    if not os.path.exists(path):
        CONFIG_LOGGER.debug(
            "Config file not found",
            extra={"event": "config_missing", "path": path},
        )
        return None
    try:
        with open(path, "r", encoding="utf-8") as config_file:
            data = json.load(config_file)
    except (OSError, ValueError) as error:
        CONFIG_LOGGER.warning(
            "Ignoring unreadable config file",
            extra={
                "event": "config_invalid",
                "path": path,
                "error_type": type(error).__name__,
            },
        )
        return None
    if not isinstance(data, dict):
        CONFIG_LOGGER.warning(
            "Ignoring config file without a top-level object",
            extra={"event": "config_invalid", "path": path},
        )
        return None
    return data


def _parse_port(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _parse_handlers(raw: Any) -> dict[str, HandlerDescriptor]:
    handlers: dict[str, HandlerDescriptor] = {}
    if not isinstance(raw, dict):
        return handlers
    for extension, spec in raw.items():
        if not isinstance(spec, dict) or not spec.get("command"):
            CONFIG_LOGGER.warning(
                "Skipping handler without a command",
                extra={"event": "handler_invalid", "extension": extension},
            )
            continue
        args = spec.get("args") or []
        handlers[str(extension).lower()] = HandlerDescriptor(
            command=str(spec["command"]),
            args=tuple(str(arg) for arg in args),
        )
    return handlers


def _non_empty_str(data: dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if isinstance(value, str) and value:
        return value
    return None


def merge_config(
    file_data: Optional[dict[str, Any]], args: argparse.Namespace
) -> ServerConfig:
    """Layer CLI flags over config-file values over built-in defaults."""
    # pylint: disable=too-many-branches
    values: dict[str, Any] = {}
    data = file_data or {}

    for key in ("homedir", "access_log", "error_log", "handler_log", "dirlist_template"):
        value = _non_empty_str(data, key)
        if value is not None:
            values[key] = value

    port = _parse_port(data.get("port"))
    if port is not None:
        values["port"] = port
    elif data.get("port") not in (None, ""):
        CONFIG_LOGGER.warning(
            "Ignoring invalid port in config file",
            extra={"event": "config_invalid", "port": str(data.get("port"))},
        )

    pages = data.get("error_pages")
    if isinstance(pages, dict):
        values["error_pages"] = ErrorPages(
            not_found=_non_empty_str(pages, "404") or DEFAULT_NOT_FOUND_PAGE,
            internal=_non_empty_str(pages, "500") or DEFAULT_INTERNAL_ERROR_PAGE,
        )

    indexes = data.get("default_indexes")
    if isinstance(indexes, list) and indexes:
        values["default_indexes"] = tuple(str(name) for name in indexes)

    handlers = _parse_handlers(data.get("handlers"))
    if handlers:
        values["handlers"] = types.MappingProxyType(handlers)

    if args.homedir:
        values["homedir"] = args.homedir
    if args.port is not None:
        values["port"] = args.port
    values["host"] = args.host
    values["socket_timeout"] = args.socket_timeout
    return ServerConfig(**values)


def load_config(args: argparse.Namespace) -> ServerConfig:
    """Build the effective configuration for a parsed command line."""
    return merge_config(load_config_file(args.config), args)
