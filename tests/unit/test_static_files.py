"""Unit tests for static file serving."""

import os
from email.utils import formatdate
from pathlib import Path

import pytest

from webroot.domain.http_types import BufferedResponse, HttpRequest
from webroot.handlers.static_files import (
    RangeNotSatisfiable,
    content_type_for,
    parse_byte_range,
    serve_file,
)

CONTENT = b"0123456789abcdef"
MTIME = 1_700_000_000


def make_request(method: str = "GET", **headers: str) -> HttpRequest:
    return HttpRequest(
        method=method,
        target="/data.txt",
        path="/data.txt",
        query="",
        version="HTTP/1.1",
        headers={name.replace("_", "-"): value for name, value in headers.items()},
    )


@pytest.fixture()
def data_file(tmp_path: Path) -> str:
    path = tmp_path / "data.txt"
    path.write_bytes(CONTENT)
    os.utime(path, (MTIME, MTIME))
    return path.as_posix()


def test_serve_file_sends_full_body(data_file: str) -> None:
    """A plain GET returns the exact bytes with metadata headers."""
    response = BufferedResponse()

    serve_file(response, make_request(), data_file)

    assert response.status == 200
    assert response.body == CONTENT
    assert response.headers["Content-Length"] == str(len(CONTENT))
    assert response.headers["Content-Type"] == "text/plain; charset=utf-8"
    assert response.headers["Last-Modified"] == formatdate(MTIME, usegmt=True)
    assert response.headers["Accept-Ranges"] == "bytes"


def test_serve_file_is_repeatable(data_file: str) -> None:
    """Two identical requests produce identical responses."""
    first, second = BufferedResponse(), BufferedResponse()

    serve_file(first, make_request(), data_file)
    serve_file(second, make_request(), data_file)

    assert (first.status, first.body) == (second.status, second.body)


def test_head_sends_headers_only(data_file: str) -> None:
    """HEAD reports the length but writes no body."""
    response = BufferedResponse()

    serve_file(response, make_request("HEAD"), data_file)

    assert response.status == 200
    assert response.body == b""
    assert response.headers["Content-Length"] == str(len(CONTENT))


def test_single_range_returns_partial_content(data_file: str) -> None:
    """A satisfiable single range yields 206 with the slice."""
    response = BufferedResponse()

    serve_file(response, make_request(range="bytes=2-5"), data_file)

    assert response.status == 206
    assert response.body == b"2345"
    assert response.headers["Content-Range"] == f"bytes 2-5/{len(CONTENT)}"
    assert response.headers["Content-Length"] == "4"


def test_unsatisfiable_range_is_416(data_file: str) -> None:
    """A range past the end of the file cannot be served."""
    response = BufferedResponse()

    serve_file(response, make_request(range="bytes=100-"), data_file)

    assert response.status == 416
    assert response.headers["Content-Range"] == f"bytes */{len(CONTENT)}"


def test_multi_range_falls_back_to_full_body(data_file: str) -> None:
    """Multiple ranges are answered with the whole file."""
    response = BufferedResponse()

    serve_file(response, make_request(range="bytes=0-1,4-5"), data_file)

    assert response.status == 200
    assert response.body == CONTENT


def test_if_modified_since_yields_304(data_file: str) -> None:
    """An unchanged file is not resent."""
    response = BufferedResponse()

    serve_file(
        response,
        make_request(if_modified_since=formatdate(MTIME, usegmt=True)),
        data_file,
    )

    assert response.status == 304
    assert response.body == b""


def test_stale_if_modified_since_sends_body(data_file: str) -> None:
    """A file newer than the validator is sent in full."""
    response = BufferedResponse()

    serve_file(
        response,
        make_request(if_modified_since=formatdate(MTIME - 60, usegmt=True)),
        data_file,
    )

    assert response.status == 200
    assert response.body == CONTENT


def test_if_unmodified_since_in_past_is_412(data_file: str) -> None:
    """A file changed after the precondition date fails it."""
    response = BufferedResponse()

    serve_file(
        response,
        make_request(if_unmodified_since=formatdate(MTIME - 60, usegmt=True)),
        data_file,
    )

    assert response.status == 412


def test_if_range_mismatch_sends_full_body(data_file: str) -> None:
    """A stale If-Range validator disables the range."""
    response = BufferedResponse()

    serve_file(
        response,
        make_request(range="bytes=0-1", if_range=formatdate(MTIME - 60, usegmt=True)),
        data_file,
    )

    assert response.status == 200
    assert response.body == CONTENT


def test_missing_file_is_404(tmp_path: Path) -> None:
    """A file that vanished after resolution is reported as not found."""
    response = BufferedResponse()

    serve_file(response, make_request(), (tmp_path / "gone.txt").as_posix())

    assert response.status == 404


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("bytes=0-0", (0, 1)),
        ("bytes=4-", (4, 12)),
        ("bytes=-3", (13, 3)),
        ("bytes=-100", (0, 16)),
        ("bytes=10-100", (10, 6)),
        ("items=0-1", None),
        ("bytes=0-1, 3-4", None),
    ],
)
def test_parse_byte_range(value: str, expected) -> None:
    """Single ranges resolve to (start, length) within the file."""
    assert parse_byte_range(value, 16) == expected


@pytest.mark.parametrize("value", ["bytes=5-2", "bytes=16-", "bytes=-0", "bytes=x-1", "bytes=3"])
def test_parse_byte_range_rejects_invalid(value: str) -> None:
    """Malformed or non-overlapping ranges raise."""
    with pytest.raises(RangeNotSatisfiable):
        parse_byte_range(value, 16)


def test_content_type_for_unknown_extension() -> None:
    """Unknown types are served as opaque bytes."""
    assert content_type_for("/x/blob.unknownext") == "application/octet-stream"
    assert content_type_for("/x/page.html") == "text/html; charset=utf-8"
    assert content_type_for("/x/logo.png") == "image/png"
