"""Per-request correlation IDs for the diagnostic log, held in contextvars."""

import contextlib
import contextvars
import logging
import uuid
from typing import Any, Iterator, MutableMapping, Optional

LOGGER_PREFIX = "webroot."

_request_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "request_id", default=None
)


def new_request_id() -> str:
    """Return a fresh random request ID."""
    return uuid.uuid4().hex[:16]


def current_request_id() -> Optional[str]:
    """Return the request ID bound to the running thread, if any."""
    return _request_id_var.get()


@contextlib.contextmanager
def request_scope(request_id: Optional[str] = None) -> Iterator[str]:
    """Bind a request ID for the duration of one request."""
    bound = request_id or new_request_id()
    token = _request_id_var.set(bound)
    try:
        yield bound
    finally:
        _request_id_var.reset(token)


class CorrelationLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter tagging records with the request ID and component name."""

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra["correlation_id"] = current_request_id() or "-"
        name = self.logger.name
        extra["component"] = (
            name[len(LOGGER_PREFIX) :] if name.startswith(LOGGER_PREFIX) else name
        )
        kwargs["extra"] = extra
        return msg, kwargs
