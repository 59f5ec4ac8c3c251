"""Server lifecycle state: stop flag and in-flight worker tracking."""

import logging
import socket
import threading
import time

from webroot.domain.correlation_id import CorrelationLoggerAdapter

LIFECYCLE_LOGGER = CorrelationLoggerAdapter(logging.getLogger("webroot.lifecycle"), {})


class ServerLifecycle:
    """Tracks worker threads and coordinates graceful shutdown.

    Connections waiting for their next keep-alive request are tracked as idle
    so a stop request can end them at once instead of waiting out the grace
    period.
    """

    def __init__(self) -> None:
        # Reentrant: request_stop runs in a signal handler on the main thread.
        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._workers: set[threading.Thread] = set()
        self._idle: set[socket.socket] = set()

    def should_stop(self) -> bool:
        """Check if the server should stop accepting new connections."""
        return self._stop_event.is_set()

    def request_stop(self, signum: int = 0) -> None:
        """Stop accepting connections; in-flight requests keep running."""
        if not self._stop_event.is_set():
            LIFECYCLE_LOGGER.info(
                "Shutdown requested",
                extra={"event": "shutdown_requested", "signal": signum},
            )
        self._stop_event.set()
        with self._lock:
            idle = list(self._idle)
        for client_socket in idle:
            try:
                client_socket.shutdown(socket.SHUT_RD)
            except OSError:
                pass

    def mark_idle(self, client_socket: socket.socket) -> bool:
        """Record that client_socket waits for its next request.

        Returns False once a stop was requested; the caller should close
        the connection instead of reading from it.
        """
        with self._lock:
            if self._stop_event.is_set():
                return False
            self._idle.add(client_socket)
            return True

    def mark_busy(self, client_socket: socket.socket) -> None:
        with self._lock:
            self._idle.discard(client_socket)

    def register_worker(self, thread: threading.Thread) -> None:
        with self._lock:
            self._workers.add(thread)

    def cleanup_worker(self, thread: threading.Thread) -> None:
        with self._lock:
            self._workers.discard(thread)

    def active_worker_count(self) -> int:
        """Return the number of tracked workers still running."""
        with self._lock:
            return sum(1 for worker in self._workers if worker.is_alive())

    def wait_for_workers(self, timeout: float) -> bool:
        """Wait for all worker threads to complete within the timeout."""
        deadline = time.monotonic() + timeout
        while True:
            with self._lock:
                self._workers = {w for w in self._workers if w.is_alive()}
                active_workers = list(self._workers)
            if not active_workers:
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                LIFECYCLE_LOGGER.warning(
                    "Shutdown grace period exceeded",
                    extra={
                        "event": "shutdown_timeout",
                        "remaining_workers": len(active_workers),
                    },
                )
                return False
            for worker in active_workers:
                worker.join(timeout=min(0.1, remaining))
                if time.monotonic() >= deadline:
                    break
