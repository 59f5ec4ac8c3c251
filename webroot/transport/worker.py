"""Worker thread logic for handling individual client connections."""

import logging
import socket
import threading
from http import HTTPStatus
from typing import Optional

from webroot.domain.correlation_id import CorrelationLoggerAdapter, request_scope
from webroot.domain.http_types import HttpRequest
from webroot.pipeline.io import (
    RequestEntityTooLarge,
    SocketResponseWriter,
    receive_request,
    send_simple_response,
)
from webroot.transport.context import WorkerContext

WORKER_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("webroot.transport.worker"), {}
)


def format_peer(client_address: tuple) -> str:
    """Render a socket peer address as ``ip:port`` (``[ip]:port`` for IPv6)."""
    host, port = client_address[0], client_address[1]
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def _read_request(
    client_socket: socket.socket, buffer: bytes, peer: str
) -> tuple[Optional[HttpRequest], bytes]:
    """Read the next request, answering protocol errors directly.

    Returns ``(None, b"")`` when the connection should be closed.
    """
    try:
        return receive_request(client_socket, buffer, peer)
    except RequestEntityTooLarge:
        WORKER_LOGGER.warning(
            "Request body size exceeded limit",
            extra={"event": "body_size_exceeded", "client": peer},
        )
        send_simple_response(client_socket, HTTPStatus.REQUEST_ENTITY_TOO_LARGE)
    except ValueError:
        WORKER_LOGGER.warning(
            "Malformed request received",
            extra={"event": "malformed_request", "client": peer},
        )
        send_simple_response(client_socket, HTTPStatus.BAD_REQUEST)
    return None, b""


def _close_socket(client_socket: socket.socket, peer: str) -> None:
    try:
        client_socket.shutdown(socket.SHUT_WR)
    except OSError:
        pass
    client_socket.close()
    WORKER_LOGGER.debug("Socket closed", extra={"event": "socket_closed", "client": peer})


def serve_connection(
    client_socket: socket.socket, peer: str, context: WorkerContext
) -> None:
    """Serve requests on one connection until either side wants it closed.

    Between keep-alive requests the connection is marked idle, so a stop
    request shuts its read side and the wait for the next request ends.
    """
    lifecycle = context.lifecycle
    buffer = b""
    served = 0
    while True:
        idle = lifecycle is not None and served > 0 and not buffer
        if idle and not lifecycle.mark_idle(client_socket):
            return
        try:
            request, buffer = _read_request(client_socket, buffer, peer)
        finally:
            if idle:
                lifecycle.mark_busy(client_socket)
        if request is None:
            return
        with request_scope():
            writer = SocketResponseWriter(client_socket, request)
            context.dispatcher.dispatch(request, writer)
        served += 1
        if writer.close_connection:
            return
        if lifecycle is not None and lifecycle.should_stop():
            return


def handle_client(
    client_socket: socket.socket,
    client_address: tuple,
    context: WorkerContext,
) -> None:
    """Thread entry point: process requests on a client socket, then close it."""
    peer = format_peer(client_address)
    current_thread = threading.current_thread()
    lifecycle = context.lifecycle
    if context.socket_timeout is not None:
        client_socket.settimeout(context.socket_timeout)

    try:
        serve_connection(client_socket, peer, context)
    except (ConnectionError, TimeoutError, OSError) as error:
        WORKER_LOGGER.info(
            "Client connection ended",
            extra={
                "event": "connection_error",
                "client": peer,
                "error_type": type(error).__name__,
            },
        )
    except Exception as error:  # pylint: disable=broad-except
        WORKER_LOGGER.error(
            "Unexpected error in worker",
            extra={
                "event": "worker_error",
                "client": peer,
                "error_type": type(error).__name__,
            },
            exc_info=True,
        )
    finally:
        if lifecycle is not None:
            lifecycle.cleanup_worker(current_thread)
        _close_socket(client_socket, peer)
