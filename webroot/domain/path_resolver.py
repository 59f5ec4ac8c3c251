"""Mapping of request paths onto the served directory tree."""

import enum
import os
import stat
from dataclasses import dataclass
from typing import Iterable, Optional


class ForbiddenPath(Exception):
    """Raised when a requested path could step outside the served directory."""


class TargetKind(enum.Enum):
    """Classification of a resolved filesystem target."""

    MISSING = "missing"
    DIRECTORY = "directory"
    FILE = "file"


@dataclass(frozen=True)
class Resolution:
    """Outcome of resolving a request path."""

    kind: TargetKind
    fs_path: str


def _reject_unsafe(request_path: str) -> None:
    if "\x00" in request_path:
        raise ForbiddenPath(request_path)
    if ".." in request_path.split("/"):
        raise ForbiddenPath(request_path)


def resolve_path(homedir: str, request_path: str) -> Resolution:
    """Join the request path onto homedir and classify what is there.

    The join is plain concatenation. Any stat failure, transient or not,
    counts as missing.
    """
    _reject_unsafe(request_path)
    fs_path = homedir + request_path
    try:
        info = os.stat(fs_path)
    except (OSError, ValueError):
        return Resolution(TargetKind.MISSING, fs_path)
    if stat.S_ISDIR(info.st_mode):
        return Resolution(TargetKind.DIRECTORY, fs_path)
    return Resolution(TargetKind.FILE, fs_path)


def find_index(directory: str, indexes: Iterable[str]) -> Optional[str]:
    """Return the first configured index file present in directory."""
    for name in indexes:
        candidate = os.path.join(directory, name)
        try:
            info = os.stat(candidate)
        except (OSError, ValueError):
            continue
        if not stat.S_ISDIR(info.st_mode):
            return candidate
    return None


def extension_of(fs_path: str) -> str:
    """Return the lower-cased extension of fs_path including the leading dot."""
    return os.path.splitext(fs_path)[1].lower()
