"""Access, error and handler log sinks and their line formats.

Each sink is its own logger with a single handler. ``logging.Handler`` takes
its own lock around every emit, so lines written to one sink never interleave
and the sinks never contend with each other.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from webroot.domain.correlation_id import CorrelationLoggerAdapter
from webroot.domain.http_types import HttpRequest

SINK_LOGGER = CorrelationLoggerAdapter(logging.getLogger("webroot.log_sinks"), {})

ACCESS_TIME_FORMAT = "%d/%b/%Y:%H:%M:%S %z"
ERROR_LOG_FORMAT = "%(asctime)s %(message)s"
ERROR_DATE_FORMAT = "%Y/%m/%d %H:%M:%S"


def _sink_logger(kind: str, handler: logging.Handler) -> logging.Logger:
    # Built outside the logging manager so every LogSinks owns its loggers.
    logger = logging.Logger(f"webroot.sink.{kind}", logging.INFO)
    logger.propagate = False
    logger.addHandler(handler)
    return logger


def open_sink_handler(
    path: str, kind: str, fmt: str = "%(message)s", datefmt: Optional[str] = None
) -> logging.Handler:
    """Open an append-mode file handler, or a no-op handler if that fails."""
    try:
        handler: logging.Handler = logging.FileHandler(
            path, mode="a", encoding="utf-8", errors="backslashreplace"
        )
    except OSError as error:
        SINK_LOGGER.warning(
            "Log sink disabled, file could not be opened",
            extra={
                "event": "sink_open_failed",
                "sink": kind,
                "path": path,
                "error_type": type(error).__name__,
            },
        )
        return logging.NullHandler()
    handler.setFormatter(logging.Formatter(fmt, datefmt))
    return handler


@dataclass
class LogSinks:
    """The three request log destinations handed to the dispatcher."""

    access: logging.Logger
    error: logging.Logger
    handler: logging.Logger

    @classmethod
    def open(cls, access_path: str, error_path: str, handler_path: str) -> "LogSinks":
        """Open file-backed sinks at the given paths."""
        return cls.from_handlers(
            open_sink_handler(access_path, "access"),
            open_sink_handler(error_path, "error", ERROR_LOG_FORMAT, ERROR_DATE_FORMAT),
            open_sink_handler(handler_path, "handler"),
        )

    @classmethod
    def from_handlers(
        cls,
        access: logging.Handler,
        error: logging.Handler,
        handler: logging.Handler,
    ) -> "LogSinks":
        """Wrap existing handlers, e.g. in-memory ones in tests."""
        return cls(
            access=_sink_logger("access", access),
            error=_sink_logger("error", error),
            handler=_sink_logger("handler", handler),
        )

    def close(self) -> None:
        """Flush and close every sink handler."""
        for logger in (self.access, self.error, self.handler):
            for sink_handler in list(logger.handlers):
                sink_handler.close()
                logger.removeHandler(sink_handler)


def remote_host(remote_addr: str) -> str:
    """Strip the port from an ``ip:port`` peer address."""
    host, sep, _ = remote_addr.rpartition(":")
    return host if sep else remote_addr


def format_access_line(
    request: HttpRequest, status: int, size: int, now: Optional[datetime] = None
) -> str:
    """Render an Apache combined-log style access line."""
    stamp = (now or datetime.now().astimezone()).strftime(ACCESS_TIME_FORMAT)
    request_line = f"{request.method} {request.target} {request.version}"
    referer = request.header("referer") or "-"
    user_agent = request.header("user-agent") or "-"
    return (
        f'{remote_host(request.remote_addr)} - - [{stamp}] "{request_line}" '
        f'{status} {size} "{referer}" "{user_agent}"'
    )


def format_error_line(request: HttpRequest, status: int) -> str:
    """Render an error log line; the sink formatter adds the date."""
    return f"{request.method} {request.path} {status} {request.remote_addr}"


def format_handler_line(
    command: str,
    args: Sequence[str],
    file_path: str,
    request: HttpRequest,
    status: int,
    now: Optional[datetime] = None,
) -> str:
    """Render one handler invocation record."""
    stamp = (now or datetime.now().astimezone()).isoformat(timespec="seconds")
    rendered_args = "[" + " ".join(args) + "]"
    return (
        f"{stamp} | {command} | {rendered_args} | {file_path} | "
        f"{request.method} {request.target} | {request.remote_addr} | status={status}"
    )
