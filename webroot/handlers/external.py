"""CGI-style delegation of requests to external executables.

A handler descriptor names a command and argument templates. The command
runs with the request body on stdin and CGI variables in its environment;
its combined stdout and stderr become the response body. No timeout is
applied: a handler that never exits holds its worker thread until it does.
"""

import logging
import os
import stat
import subprocess
import time
from http import HTTPStatus
from typing import Optional, Sequence

from webroot.bootstrap.config import HandlerDescriptor
from webroot.bootstrap.log_sinks import format_handler_line
from webroot.domain.correlation_id import CorrelationLoggerAdapter
from webroot.domain.http_types import HttpRequest, ResponseWriter

HANDLER_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("webroot.handlers.external"), {}
)

FILEPATH_PLACEHOLDER = "{filepath}"
DEFAULT_CONTENT_TYPE = "text/html; charset=utf-8"


def resolve_command(command: str) -> str:
    """Return command as an absolute path, relative to the working directory."""
    if os.path.isabs(command):
        return command
    return os.path.abspath(command)


def is_executable(path: str) -> bool:
    """Return True when path exists and has any execute permission bit set."""
    try:
        mode = os.stat(path).st_mode
    except (OSError, ValueError):
        return False
    return bool(mode & (stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH))


def substitute_args(templates: Sequence[str], file_path: str) -> list[str]:
    """Replace every ``{filepath}`` placeholder with file_path."""
    return [template.replace(FILEPATH_PLACEHOLDER, file_path) for template in templates]


def split_host_port(value: str) -> Optional[tuple[str, str]]:
    """Split ``host:port`` or ``[v6]:port``; None when there is no port part."""
    if value.startswith("["):
        end = value.find("]")
        if end == -1 or value[end + 1 : end + 2] != ":":
            return None
        return value[1:end], value[end + 2 :]
    host, sep, port = value.rpartition(":")
    if not sep or ":" in host:
        return None
    return host, port


def build_cgi_environment(
    request: HttpRequest, file_path: str
) -> list[tuple[str, str]]:
    """Return the CGI variables for one request, in order."""
    env = [
        ("REQUEST_METHOD", request.method),
        ("QUERY_STRING", request.query),
        ("CONTENT_TYPE", request.header("content-type")),
        ("CONTENT_LENGTH", request.header("content-length")),
        ("SCRIPT_NAME", request.path),
        ("PATH_INFO", file_path),
        ("REMOTE_ADDR", request.remote_addr),
    ]
    for name, value in request.headers.items():
        if name in ("host", "cookie"):
            continue
        env.append(("HTTP_" + name.replace("-", "_").upper(), value))
    env.append(("HTTP_HOST", request.host))
    cookie = request.header("cookie")
    if cookie:
        env.append(("HTTP_COOKIE", cookie))
    env.append(("SERVER_PROTOCOL", request.version))
    host_port = split_host_port(request.host)
    if host_port is not None:
        env.append(("SERVER_NAME", host_port[0]))
        env.append(("SERVER_PORT", host_port[1]))
    else:
        env.append(("SERVER_NAME", request.host))
    env.append(("REQUEST_URI", request.target))
    return env


class ExternalHandlerInvoker:
    """Runs handler commands and writes their output as the response."""

    def __init__(self, handler_log: logging.Logger) -> None:
        self._handler_log = handler_log

    def _record(
        self,
        command: str,
        args: Sequence[str],
        file_path: str,
        request: HttpRequest,
        status: int,
    ) -> None:
        self._handler_log.info(
            format_handler_line(command, args, file_path, request, status)
        )

    def invoke(
        self,
        writer: ResponseWriter,
        request: HttpRequest,
        descriptor: HandlerDescriptor,
        file_path: str,
    ) -> int:
        """Run descriptor for file_path and return the response status."""
        command = resolve_command(descriptor.command)
        if not is_executable(command):
            HANDLER_LOGGER.error(
                "Handler command missing or not executable",
                extra={"event": "handler_not_executable", "command": command},
            )
            body = f"Handler executable not found or not executable: {command}"
            self._respond(writer, HTTPStatus.INTERNAL_SERVER_ERROR, body.encode())
            self._record(command, descriptor.args, file_path, request, 500)
            return 500

        args = substitute_args(descriptor.args, file_path)
        env = dict(os.environ)
        env.update(build_cgi_environment(request, file_path))
        started = time.perf_counter()
        try:
            completed = subprocess.run(
                [command, *args],
                input=request.body,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                env=env,
                check=False,
            )
        except (OSError, ValueError) as error:
            # ValueError: NUL bytes or "=" in names taken from request headers.
            HANDLER_LOGGER.error(
                "Handler process failed to start",
                extra={
                    "event": "handler_spawn_failed",
                    "command": command,
                    "error_type": type(error).__name__,
                },
            )
            self._respond(writer, HTTPStatus.INTERNAL_SERVER_ERROR, b"")
            self._record(command, args, file_path, request, 500)
            return 500

        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        if completed.returncode != 0:
            HANDLER_LOGGER.warning(
                "Handler exited with failure",
                extra={
                    "event": "handler_failed",
                    "command": command,
                    "exit_code": completed.returncode,
                    "duration_ms": duration_ms,
                },
            )
            status = HTTPStatus.INTERNAL_SERVER_ERROR
        else:
            writer.headers.setdefault("Content-Type", DEFAULT_CONTENT_TYPE)
            status = HTTPStatus.OK
            if HANDLER_LOGGER.logger.isEnabledFor(logging.DEBUG):
                HANDLER_LOGGER.debug(
                    "Handler completed",
                    extra={
                        "event": "handler_completed",
                        "command": command,
                        "duration_ms": duration_ms,
                        "bytes_out": len(completed.stdout),
                    },
                )
        self._respond(writer, status, completed.stdout)
        self._record(command, args, file_path, request, status.value)
        return status.value

    @staticmethod
    def _respond(writer: ResponseWriter, status: HTTPStatus, body: bytes) -> None:
        writer.headers["Content-Length"] = str(len(body))
        writer.write_header(status.value)
        writer.write(body)
