"""Custom error page responses with literal fallbacks."""

import logging
from http import HTTPStatus

from webroot.domain.correlation_id import CorrelationLoggerAdapter
from webroot.domain.http_types import ResponseWriter

ERROR_PAGE_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("webroot.handlers.error_pages"), {}
)

NOT_FOUND_MESSAGE = "404 page not found"
INTERNAL_ERROR_MESSAGE = "500 internal server error"


def serve_error_page(
    writer: ResponseWriter, status: HTTPStatus, page_path: str, fallback: str
) -> None:
    """Send status with the page at page_path, or fallback if it is unreadable."""
    content_type = "text/html; charset=utf-8"
    body = None
    if page_path:
        try:
            with open(page_path, "rb") as page:
                body = page.read()
        except OSError:
            ERROR_PAGE_LOGGER.debug(
                "Error page unreadable, using fallback",
                extra={"event": "error_page_fallback", "path": page_path},
            )
    if body is None:
        body = fallback.encode()
        content_type = "text/plain; charset=utf-8"
    writer.headers["Content-Type"] = content_type
    writer.headers["Content-Length"] = str(len(body))
    writer.write_header(status.value)
    writer.write(body)
