"""Listening socket creation and TLS configuration."""

import logging
import socket
import ssl

from catd.bootstrap.config import ListenerConfig
from catd.domain.correlation_id import CorrelationLoggerAdapter
from catd.domain.errors import ListenerError

SOCKET_LOGGER = CorrelationLoggerAdapter(logging.getLogger("catd.socket"), {})

ACCEPT_POLL_SECONDS = 0.05


def create_server_socket(config: ListenerConfig) -> socket.socket:
    """Create the listening socket, optionally wrapped in TLS.

    The socket gets a short timeout so the accept loop can notice a stop
    request between connections. TLS handshakes are deferred to the worker
    thread so a slow client cannot stall accepting.

    Raises:
        ListenerError: if binding fails or the TLS material cannot be loaded.
    """
    try:
        server_socket = socket.create_server((config.host, config.port))
    except OSError as error:
        SOCKET_LOGGER.critical(
            "Failed to bind listening socket",
            extra={
                "event": "bind_failed",
                "host": config.host,
                "port": config.port,
                "error_type": type(error).__name__,
                "errno": error.errno,
            },
        )
        raise ListenerError(
            f"couldn't listen on {config.host}:{config.port}: {error}"
        ) from error
    server_socket.settimeout(ACCEPT_POLL_SECONDS)

    if config.tls:
        try:
            tls_context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
            tls_context.load_cert_chain(config.cert, config.key)
            server_socket = tls_context.wrap_socket(
                server_socket, server_side=True, do_handshake_on_connect=False
            )
        except (ssl.SSLError, OSError) as error:
            server_socket.close()
            SOCKET_LOGGER.critical(
                "Failed to load TLS certificates",
                extra={"event": "tls_failed", "error_type": type(error).__name__},
            )
            raise ListenerError(f"couldn't load TLS certificates: {error}") from error
    return server_socket
