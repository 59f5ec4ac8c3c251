"""Shared fixtures for unit tests."""

import logging
from dataclasses import dataclass

import pytest

from webroot.bootstrap.log_sinks import LogSinks


class RecordingHandler(logging.Handler):
    """In-memory log handler keeping formatted lines."""

    def __init__(self) -> None:
        super().__init__()
        self.lines: list[str] = []
        self.setFormatter(logging.Formatter("%(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        self.lines.append(self.format(record))


@dataclass
class MemorySinks:
    """LogSinks backed by recording handlers, plus access to their lines."""

    sinks: LogSinks
    access: RecordingHandler
    error: RecordingHandler
    handler: RecordingHandler


@pytest.fixture(autouse=True)
def enable_log_propagation():
    """Ensure logs propagate to root so caplog can catch them."""
    logger = logging.getLogger("webroot")
    old_propagate = logger.propagate
    old_level = logger.level
    logger.propagate = True
    yield
    logger.propagate = old_propagate
    logger.setLevel(old_level)


@pytest.fixture()
def memory_sinks() -> MemorySinks:
    """Provide request log sinks that record lines in memory."""
    access, error, handler = RecordingHandler(), RecordingHandler(), RecordingHandler()
    return MemorySinks(LogSinks.from_handlers(access, error, handler), access, error, handler)
