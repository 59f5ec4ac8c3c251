"""Shared HTTP type definitions to avoid circular imports."""

from dataclasses import dataclass, field
from typing import MutableMapping, Protocol


@dataclass
class HttpRequest:
    """Represents a parsed HTTP request and the peer it came from."""

    method: str
    target: str
    path: str
    query: str
    version: str
    headers: dict[str, str]
    body: bytes = b""
    remote_addr: str = ""

    @property
    def host(self) -> str:
        """Return the Host header value."""
        return self.headers.get("host", "")

    def header(self, name: str) -> str:
        """Return a header value by case-insensitive name, or an empty string."""
        return self.headers.get(name.lower(), "")


class ResponseWriter(Protocol):
    """The status/bytes capability pair every response branch writes through."""

    headers: MutableMapping[str, str]

    def write_header(self, status: int) -> None:
        """Send the status line and headers."""

    def write(self, data: bytes) -> int:
        """Send body bytes, returning how many were written."""

    def finish(self) -> None:
        """Complete the response after the last body write."""


@dataclass
class BufferedResponse:
    """In-memory ResponseWriter used by unit tests and tooling."""

    headers: dict[str, str] = field(default_factory=dict)
    status: int = 0
    body: bytes = b""
    finished: bool = False

    def write_header(self, status: int) -> None:
        if not self.status:
            self.status = status

    def write(self, data: bytes) -> int:
        if not self.status:
            self.write_header(200)
        self.body += data
        return len(data)

    def finish(self) -> None:
        if not self.status:
            self.write_header(200)
        self.finished = True


def should_close(request: HttpRequest) -> bool:
    """Determine whether the connection should be closed after responding."""
    connection = request.header("connection").lower()
    if request.version == "HTTP/1.0":
        return connection != "keep-alive"
    return connection == "close"
