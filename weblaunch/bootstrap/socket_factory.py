"""Listening socket creation."""

import socket

from weblaunch.domain.correlation_id import component_logger
from weblaunch.domain.errors import ListenBindError

SOCKET_LOGGER = component_logger("socket")


def create_server_socket(host: str, port: int) -> socket.socket:
    """Bind and listen on ``host:port``, raising :class:`ListenBindError` on failure."""
    try:
        server_socket = socket.create_server((host, port))
    except OSError as error:
        raise ListenBindError(host, port, error.strerror or str(error)) from error
    SOCKET_LOGGER.debug(
        "Listening socket bound",
        extra={"event": "socket_bound", "host": host, "port": port},
    )
    return server_socket
