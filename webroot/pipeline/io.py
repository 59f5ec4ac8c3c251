"""HTTP/1.x request parsing and the socket-backed response writer."""

import logging
import socket
import urllib.parse
from email.utils import formatdate
from http import HTTPStatus
from typing import Optional, Tuple

from webroot.bootstrap.config import HEADER_DELIMITER, MAX_BODY_BYTES
from webroot.domain.correlation_id import CorrelationLoggerAdapter
from webroot.domain.http_types import HttpRequest, should_close

IO_LOGGER = CorrelationLoggerAdapter(logging.getLogger("webroot.pipeline.io"), {})

CRLF = b"\r\n"
RECV_SIZE = 4096


class RequestEntityTooLarge(Exception):
    """Raised when a request body exceeds configured limits."""


def parse_headers(lines: list[str]) -> dict[str, str]:
    """Convert raw header lines into a lowercase-keyed dictionary.

    Repeated headers are joined with commas; lines without a colon are skipped.
    """
    parsed: dict[str, str] = {}
    for line in lines:
        name, sep, value = line.partition(":")
        name = name.strip().lower()
        if not sep or not name:
            continue
        value = value.strip()
        if name in parsed:
            parsed[name] = f"{parsed[name]},{value}"
        else:
            parsed[name] = value
    return parsed


def parse_request_line(request_line: str) -> Tuple[str, str, str]:
    """Split the request line into method, request-target and version."""
    parts = request_line.split(" ")
    if len(parts) != 3:
        raise ValueError("Invalid request line")
    method, target, version = parts
    if not method or not target or not version.startswith("HTTP/1."):
        raise ValueError("Invalid request line")
    return method, target, version


def split_target(target: str) -> Tuple[str, str]:
    """Return the percent-decoded path and raw query string of a request-target.

    Decoded bytes that are not UTF-8 are kept as surrogate escapes, so the
    path still names the same file on disk.
    """
    parsed_target = urllib.parse.urlsplit(target)
    path = urllib.parse.unquote(parsed_target.path, errors="surrogateescape")
    if not path.startswith("/"):
        raise ValueError("Request path must be absolute")
    return path, parsed_target.query


def determine_content_length(headers: dict[str, str]) -> int:
    """Validate and return the declared Content-Length for the request."""
    header_value = headers.get("content-length")
    if header_value is None:
        return 0
    try:
        content_length = int(header_value)
    except ValueError as exc:
        raise ValueError("Invalid Content-Length") from exc
    if content_length < 0:
        raise ValueError("Negative Content-Length")
    if content_length > MAX_BODY_BYTES:
        raise RequestEntityTooLarge
    return content_length


def _recv_more(client_socket: socket.socket, buffer: bytes) -> Optional[bytes]:
    chunk = client_socket.recv(RECV_SIZE)
    if not chunk:
        return None
    return buffer + chunk


def _read_chunked_body(
    client_socket: socket.socket, buffer: bytes
) -> Tuple[Optional[bytes], bytes]:
    """Decode a chunked request body, returning it and any leftover bytes."""
    chunks: list[bytes] = []
    total = 0
    remaining = buffer
    while True:
        while CRLF not in remaining:
            extended = _recv_more(client_socket, remaining)
            if extended is None:
                return None, b""
            remaining = extended
        size_line, remaining = remaining.split(CRLF, 1)
        try:
            size = int(size_line.split(b";", 1)[0].strip(), 16)
        except ValueError as exc:
            raise ValueError("Invalid chunk size") from exc
        if size == 0:
            # Skip trailers up to the blank line.
            while True:
                while CRLF not in remaining:
                    extended = _recv_more(client_socket, remaining)
                    if extended is None:
                        return None, b""
                    remaining = extended
                line, remaining = remaining.split(CRLF, 1)
                if not line:
                    return b"".join(chunks), remaining
        total += size
        if total > MAX_BODY_BYTES:
            raise RequestEntityTooLarge
        while len(remaining) < size + len(CRLF):
            extended = _recv_more(client_socket, remaining)
            if extended is None:
                return None, b""
            remaining = extended
        chunks.append(remaining[:size])
        remaining = remaining[size + len(CRLF) :]


def receive_request(
    client_socket: socket.socket, buffer: bytes, remote_addr: str = ""
) -> Tuple[Optional[HttpRequest], bytes]:
    """Read bytes from the socket until a complete request is available."""
    while HEADER_DELIMITER not in buffer:
        extended = _recv_more(client_socket, buffer)
        if extended is None:
            return None, b""
        buffer = extended
        if len(buffer) > MAX_BODY_BYTES:
            raise RequestEntityTooLarge

    header_block, remainder = buffer.split(HEADER_DELIMITER, 1)
    header_lines = header_block.decode("iso-8859-1").split("\r\n")
    method, target, version = parse_request_line(header_lines[0])
    path, query = split_target(target)
    headers = parse_headers(header_lines[1:])

    if headers.get("transfer-encoding", "").lower() == "chunked":
        body, leftover = _read_chunked_body(client_socket, remainder)
        if body is None:
            return None, b""
    else:
        content_length = determine_content_length(headers)
        while len(remainder) < content_length:
            extended = _recv_more(client_socket, remainder)
            if extended is None:
                return None, b""
            remainder = extended
        body = remainder[:content_length]
        leftover = remainder[content_length:]

    IO_LOGGER.debug(
        "Parsed request", extra={"method": method, "path": path, "client": remote_addr}
    )
    request = HttpRequest(
        method=method,
        target=target,
        path=path,
        query=query,
        version=version,
        headers=headers,
        body=body,
        remote_addr=remote_addr,
    )
    return request, leftover


def _status_line(status: int) -> str:
    try:
        phrase = HTTPStatus(status).phrase
    except ValueError:
        phrase = ""
    return f"HTTP/1.1 {status} {phrase}".rstrip()


def _body_allowed(status: int) -> bool:
    return not (100 <= status < 200 or status in (204, 304))


class SocketResponseWriter:
    """ResponseWriter that serializes one response onto a client socket.

    Without a Content-Length header the body is sent with chunked transfer
    encoding to HTTP/1.1 clients and delimited by closing the connection
    for HTTP/1.0 clients.
    """

    def __init__(self, client_socket: socket.socket, request: HttpRequest) -> None:
        self._socket = client_socket
        self._request = request
        self.headers: dict[str, str] = {}
        self._status: Optional[int] = None
        self._chunked = False
        self._body_allowed = True
        self._declared_length: Optional[int] = None
        self._body_bytes = 0
        self.close_connection = should_close(request)

    @property
    def status(self) -> Optional[int]:
        return self._status

    def write_header(self, status: int) -> None:
        if self._status is not None:
            IO_LOGGER.debug(
                "Ignoring superfluous status",
                extra={"event": "superfluous_status", "status_code": status},
            )
            return
        self._status = status
        self._body_allowed = _body_allowed(status) and self._request.method != "HEAD"
        headers = dict(self.headers)
        headers.setdefault("Date", formatdate(usegmt=True))
        if not _body_allowed(status):
            headers.pop("Content-Length", None)
        elif "Content-Length" in headers:
            self._declared_length = int(headers["Content-Length"])
        elif self._request.version == "HTTP/1.1":
            headers["Transfer-Encoding"] = "chunked"
            self._chunked = self._body_allowed
        else:
            self.close_connection = True
        if self.close_connection:
            headers["Connection"] = "close"
        lines = [_status_line(status)]
        lines.extend(f"{name}: {value}" for name, value in headers.items())
        self._socket.sendall("\r\n".join(lines).encode("iso-8859-1") + CRLF + CRLF)

    def write(self, data: bytes) -> int:
        if self._status is None:
            self.write_header(HTTPStatus.OK.value)
        if not data or not self._body_allowed:
            return 0
        if self._chunked:
            self._socket.sendall(f"{len(data):X}\r\n".encode() + data + CRLF)
        else:
            self._socket.sendall(data)
        self._body_bytes += len(data)
        return len(data)

    def finish(self) -> None:
        if self._status is None:
            self.headers.setdefault("Content-Length", "0")
            self.write_header(HTTPStatus.OK.value)
        if self._chunked:
            self._socket.sendall(b"0\r\n\r\n")
        elif (
            self._body_allowed
            and self._declared_length is not None
            and self._body_bytes < self._declared_length
        ):
            # Short body: the client can only resync by reconnecting.
            self.close_connection = True
        IO_LOGGER.debug(
            "Sent response",
            extra={"status_code": self._status, "bytes_out": self._body_bytes},
        )


def send_simple_response(
    client_socket: socket.socket, status: HTTPStatus, message: str = ""
) -> None:
    """Send a small plain-text response and mark the connection for closing."""
    body = (message or f"{status.value} {status.phrase}").encode()
    head = [
        _status_line(status.value),
        "Content-Type: text/plain; charset=utf-8",
        f"Content-Length: {len(body)}",
        "Connection: close",
    ]
    client_socket.sendall("\r\n".join(head).encode() + CRLF + CRLF + body)
