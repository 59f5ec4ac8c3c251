"""Response capture used to log status and byte counts for every branch."""

from typing import MutableMapping

from webroot.domain.http_types import ResponseWriter


class StatusWriter:
    """Wraps a ResponseWriter and records the last status and bytes written.

    Every call is forwarded to the wrapped writer unchanged, so the client sees
    exactly what it would have seen without the wrapper.
    """

    def __init__(self, inner: ResponseWriter, status: int = 200) -> None:
        self._inner = inner
        self.status = status
        self.bytes_written = 0
        self.header_written = False

    @property
    def headers(self) -> MutableMapping[str, str]:
        return self._inner.headers

    def write_header(self, status: int) -> None:
        self.status = status
        self.header_written = True
        self._inner.write_header(status)

    def write(self, data: bytes) -> int:
        written = self._inner.write(data)
        self.header_written = True
        self.bytes_written += written
        return written

    def finish(self) -> None:
        self._inner.finish()
