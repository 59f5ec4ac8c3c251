"""Listening socket creation."""

import socket

ACCEPT_POLL_SECONDS = 0.5


def create_server_socket(host: str, port: int) -> socket.socket:
    """Bind and listen on host:port; an empty host means all IPv4 interfaces.

    The socket times out periodically so the accept loop can notice a
    shutdown request.
    """
    server_socket = socket.create_server((host, port))
    server_socket.settimeout(ACCEPT_POLL_SECONDS)
    return server_socket
