"""Main connection acceptance loop."""

import logging
import socket
import threading

from webroot.bootstrap.config import SHUTDOWN_GRACE_SECONDS
from webroot.domain.correlation_id import CorrelationLoggerAdapter
from webroot.lifecycle.state import ServerLifecycle
from webroot.transport.context import WorkerContext
from webroot.transport.worker import handle_client

ACCEPT_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("webroot.transport.accept"), {}
)


def _spawn_worker(
    client_socket: socket.socket, client_address: tuple, context: WorkerContext
) -> None:
    thread = threading.Thread(
        target=handle_client,
        args=(client_socket, client_address, context),
        daemon=True,
    )
    thread.start()
    if context.lifecycle is not None:
        context.lifecycle.register_worker(thread)


def serve_forever(
    server_socket: socket.socket,
    context: WorkerContext,
    lifecycle: ServerLifecycle,
    grace_seconds: float = SHUTDOWN_GRACE_SECONDS,
) -> bool:
    """Accept connections until a stop is requested, then drain workers.

    Returns True when every in-flight request finished within the grace
    period. The listening socket is closed before draining starts.
    """
    try:
        while not lifecycle.should_stop():
            try:
                client_socket, client_address = server_socket.accept()
            except socket.timeout:
                continue
            except OSError as error:
                if lifecycle.should_stop():
                    break
                ACCEPT_LOGGER.error(
                    "Socket accept failed",
                    extra={"event": "accept_error", "error_type": type(error).__name__},
                )
                continue

            if ACCEPT_LOGGER.logger.isEnabledFor(logging.DEBUG):
                ACCEPT_LOGGER.debug(
                    "Client connection accepted",
                    extra={"event": "client_accepted", "client": str(client_address)},
                )
            _spawn_worker(client_socket, client_address, context)
    finally:
        server_socket.close()
        ACCEPT_LOGGER.info(
            "Waiting for active connections to complete",
            extra={"event": "shutdown_waiting", "grace_seconds": grace_seconds},
        )
    drained = lifecycle.wait_for_workers(grace_seconds)
    ACCEPT_LOGGER.info(
        "Server shutdown complete",
        extra={"event": "server_stopped", "remaining_workers": lifecycle.active_worker_count()},
    )
    return drained
