"""Static file serving with conditional and single-range request support."""

import logging
import mimetypes
import os
from datetime import datetime, timezone
from email.utils import formatdate, parsedate_to_datetime
from http import HTTPStatus
from typing import BinaryIO, Iterator, Optional

from webroot.domain.correlation_id import CorrelationLoggerAdapter
from webroot.domain.http_types import HttpRequest, ResponseWriter

FILE_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("webroot.handlers.static"), {}
)

CHUNK_SIZE = 65536
TEXT_CHARSET_TYPES = ("text/", "application/javascript", "application/json")


class RangeNotSatisfiable(Exception):
    """Raised when a Range header cannot be served for the file size."""


def content_type_for(fs_path: str) -> str:
    """Guess a Content-Type from the file extension."""
    mime_type, _ = mimetypes.guess_type(fs_path)
    if mime_type is None:
        return "application/octet-stream"
    if mime_type.startswith(TEXT_CHARSET_TYPES):
        return f"{mime_type}; charset=utf-8"
    return mime_type


def _parse_http_date(value: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_byte_range(value: str, size: int) -> Optional[tuple[int, int]]:
    """Return ``(start, length)`` for a single byte range, or None to ignore it.

    Multi-range requests are answered with the whole file.
    """
    if not value.startswith("bytes="):
        return None
    specs = [spec.strip() for spec in value[len("bytes=") :].split(",") if spec.strip()]
    if len(specs) != 1:
        return None
    first, sep, last = specs[0].partition("-")
    first, last = first.strip(), last.strip()
    if not sep:
        raise RangeNotSatisfiable(value)
    if not first:
        if not last.isdigit() or int(last) == 0 or size == 0:
            raise RangeNotSatisfiable(value)
        suffix = min(int(last), size)
        return size - suffix, suffix
    if not first.isdigit():
        raise RangeNotSatisfiable(value)
    start = int(first)
    if start >= size:
        raise RangeNotSatisfiable(value)
    if not last:
        return start, size - start
    if not last.isdigit() or int(last) < start:
        raise RangeNotSatisfiable(value)
    end = min(int(last), size - 1)
    return start, end - start + 1


def _not_modified(request: HttpRequest, modified: datetime) -> bool:
    if request.method not in ("GET", "HEAD") or request.header("if-none-match"):
        return False
    since = _parse_http_date(request.header("if-modified-since"))
    return since is not None and modified <= since


def _precondition_failed(request: HttpRequest, modified: datetime) -> bool:
    unmodified_since = _parse_http_date(request.header("if-unmodified-since"))
    return unmodified_since is not None and modified > unmodified_since


def _range_applies(request: HttpRequest, modified: datetime) -> bool:
    if request.method not in ("GET", "HEAD") or not request.header("range"):
        return False
    if_range = request.header("if-range")
    if not if_range:
        return True
    validator = _parse_http_date(if_range)
    return validator is not None and modified <= validator


def stream_file(
    file_handle: BinaryIO, length: int, chunk_size: int = CHUNK_SIZE
) -> Iterator[bytes]:
    """Yield up to length bytes from the current position in fixed-size chunks."""
    remaining = length
    while remaining > 0:
        chunk = file_handle.read(min(chunk_size, remaining))
        if not chunk:
            break
        remaining -= len(chunk)
        yield chunk


def serve_file(writer: ResponseWriter, request: HttpRequest, fs_path: str) -> None:
    """Write fs_path to the client, honoring conditional and range headers."""
    # pylint: disable=too-many-return-statements
    try:
        file_handle = open(fs_path, "rb")  # pylint: disable=consider-using-with
    except OSError as error:
        FILE_LOGGER.warning(
            "File could not be opened",
            extra={
                "event": "file_open_failed",
                "path": fs_path,
                "error_type": type(error).__name__,
            },
        )
        status = (
            HTTPStatus.FORBIDDEN
            if isinstance(error, PermissionError)
            else HTTPStatus.NOT_FOUND
        )
        body = f"{status.value} {status.phrase.lower()}".encode()
        writer.headers["Content-Type"] = "text/plain; charset=utf-8"
        writer.headers["Content-Length"] = str(len(body))
        writer.write_header(status.value)
        writer.write(body)
        return

    with file_handle:
        info = os.fstat(file_handle.fileno())
        size = info.st_size
        modified = datetime.fromtimestamp(int(info.st_mtime), tz=timezone.utc)
        writer.headers["Last-Modified"] = formatdate(int(info.st_mtime), usegmt=True)

        if _precondition_failed(request, modified):
            writer.write_header(HTTPStatus.PRECONDITION_FAILED.value)
            return
        if _not_modified(request, modified):
            writer.write_header(HTTPStatus.NOT_MODIFIED.value)
            return

        writer.headers["Content-Type"] = content_type_for(fs_path)
        writer.headers["Accept-Ranges"] = "bytes"
        status = HTTPStatus.OK
        start, length = 0, size
        if _range_applies(request, modified):
            try:
                byte_range = parse_byte_range(request.header("range"), size)
            except RangeNotSatisfiable:
                body = b"invalid range: failed to overlap"
                writer.headers["Content-Range"] = f"bytes */{size}"
                writer.headers["Content-Type"] = "text/plain; charset=utf-8"
                writer.headers["Content-Length"] = str(len(body))
                writer.write_header(HTTPStatus.REQUESTED_RANGE_NOT_SATISFIABLE.value)
                writer.write(body)
                return
            if byte_range is not None:
                start, length = byte_range
                status = HTTPStatus.PARTIAL_CONTENT
                writer.headers["Content-Range"] = (
                    f"bytes {start}-{start + length - 1}/{size}"
                )

        writer.headers["Content-Length"] = str(length)
        writer.write_header(status.value)
        if request.method == "HEAD":
            return
        file_handle.seek(start)
        for chunk in stream_file(file_handle, length):
            writer.write(chunk)

    if FILE_LOGGER.logger.isEnabledFor(logging.DEBUG):
        FILE_LOGGER.debug(
            "File served",
            extra={
                "event": "file_served",
                "path": fs_path,
                "status_code": status.value,
                "bytes_out": length,
            },
        )
