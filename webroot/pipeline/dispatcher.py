"""Request resolution and dispatch.

Every request takes exactly one branch: static file, index file, directory
listing, external handler or error page. The outgoing writer is wrapped in a
StatusWriter for all of them so one access line (and, for status >= 400, one
error line) can be written once the response is complete.
"""

import logging
import time
from http import HTTPStatus
from typing import Optional

from webroot.bootstrap.config import ServerConfig
from webroot.bootstrap.log_sinks import LogSinks, format_access_line, format_error_line
from webroot.domain.correlation_id import CorrelationLoggerAdapter
from webroot.domain.http_types import HttpRequest, ResponseWriter
from webroot.domain.instrumentation import StatusWriter
from webroot.domain.path_resolver import (
    ForbiddenPath,
    TargetKind,
    extension_of,
    find_index,
    resolve_path,
)
from webroot.handlers.dirlist import render_listing
from webroot.handlers.error_pages import (
    INTERNAL_ERROR_MESSAGE,
    NOT_FOUND_MESSAGE,
    serve_error_page,
)
from webroot.handlers.external import ExternalHandlerInvoker
from webroot.handlers.static_files import serve_file

DISPATCH_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("webroot.pipeline.dispatcher"), {}
)

FORBIDDEN_MESSAGE = "403 forbidden"


class RequestDispatcher:
    """Runs the per-request decision tree against a read-only configuration."""

    def __init__(
        self,
        config: ServerConfig,
        sinks: LogSinks,
        invoker: Optional[ExternalHandlerInvoker] = None,
    ) -> None:
        self._config = config
        self._sinks = sinks
        self._invoker = invoker or ExternalHandlerInvoker(sinks.handler)

    def dispatch(self, request: HttpRequest, writer: ResponseWriter) -> StatusWriter:
        """Answer request through writer and log the outcome."""
        capture = StatusWriter(writer)
        started = time.perf_counter()
        try:
            self._route(request, capture)
        except (ConnectionError, TimeoutError):
            self._log(request, capture, started)
            raise
        except Exception:  # pylint: disable=broad-except
            DISPATCH_LOGGER.exception(
                "Unhandled error while dispatching request",
                extra={
                    "event": "dispatch_error",
                    "method": request.method,
                    "route": request.path,
                },
            )
            if not capture.header_written:
                serve_error_page(
                    capture,
                    HTTPStatus.INTERNAL_SERVER_ERROR,
                    self._config.error_pages.internal,
                    INTERNAL_ERROR_MESSAGE,
                )
        try:
            capture.finish()
        finally:
            self._log(request, capture, started)
        return capture

    def _route(self, request: HttpRequest, writer: ResponseWriter) -> None:
        try:
            resolution = resolve_path(self._config.homedir, request.path)
        except ForbiddenPath:
            DISPATCH_LOGGER.warning(
                "Rejected path with traversal or NUL byte",
                extra={"event": "forbidden_path", "route": request.path},
            )
            serve_error_page(writer, HTTPStatus.FORBIDDEN, "", FORBIDDEN_MESSAGE)
            return

        if resolution.kind is TargetKind.MISSING:
            serve_error_page(
                writer,
                HTTPStatus.NOT_FOUND,
                self._config.error_pages.not_found,
                NOT_FOUND_MESSAGE,
            )
            return

        if resolution.kind is TargetKind.DIRECTORY:
            index_path = find_index(resolution.fs_path, self._config.default_indexes)
            if index_path is None:
                render_listing(
                    writer,
                    resolution.fs_path,
                    request.path,
                    self._config.dirlist_template,
                )
                return
            self._serve_target(request, writer, index_path)
            return

        self._serve_target(request, writer, resolution.fs_path)

    def _serve_target(
        self, request: HttpRequest, writer: ResponseWriter, fs_path: str
    ) -> None:
        descriptor = self._config.handlers.get(extension_of(fs_path))
        if descriptor is not None:
            if DISPATCH_LOGGER.logger.isEnabledFor(logging.DEBUG):
                DISPATCH_LOGGER.debug(
                    "Delegating to external handler",
                    extra={"event": "handler_matched", "path": fs_path},
                )
            self._invoker.invoke(writer, request, descriptor, fs_path)
            return
        serve_file(writer, request, fs_path)

    def _log(self, request: HttpRequest, capture: StatusWriter, started: float) -> None:
        self._sinks.access.info(
            format_access_line(request, capture.status, capture.bytes_written)
        )
        if capture.status >= 400:
            self._sinks.error.info(format_error_line(request, capture.status))
        if DISPATCH_LOGGER.logger.isEnabledFor(logging.DEBUG):
            DISPATCH_LOGGER.debug(
                "Request dispatched",
                extra={
                    "event": "request_dispatched",
                    "method": request.method,
                    "route": request.path,
                    "status_code": capture.status,
                    "bytes_out": capture.bytes_written,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                },
            )
