"""Context object shared across worker threads."""

from dataclasses import dataclass
from typing import Optional

from webroot.lifecycle.state import ServerLifecycle
from webroot.pipeline.dispatcher import RequestDispatcher


@dataclass(frozen=True)
class WorkerContext:
    """Dependencies shared across handler threads."""

    dispatcher: RequestDispatcher
    lifecycle: Optional[ServerLifecycle] = None
    socket_timeout: Optional[float] = None
