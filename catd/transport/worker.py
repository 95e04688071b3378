"""Worker thread logic for handling individual client connections."""

import logging
import socket
import ssl
import threading
from dataclasses import dataclass
from typing import Optional

from catd.bootstrap.config import SECURITY_HEADERS
from catd.domain.correlation_id import (
    CorrelationLoggerAdapter,
    clear_correlation_id,
    generate_correlation_id,
    set_correlation_id,
)
from catd.domain.http_types import HttpRequest
from catd.domain.response_builders import bad_request_response
from catd.pipeline.io import receive_request, send_response
from catd.transport.context import WorkerContext

WORKER_LOGGER = CorrelationLoggerAdapter(logging.getLogger("catd.transport.worker"), {})


def _read_request_with_validation(
    client_socket: socket.socket,
    buffer: bytes,
    client_addr_str: str,
) -> tuple[Optional[HttpRequest], bytes, bool]:
    """Read a request, answering malformed input with a 400."""
    try:
        request, buffer = receive_request(client_socket, buffer)
    except (ValueError, UnicodeDecodeError):
        WORKER_LOGGER.warning(
            "Malformed request received",
            extra={"event": "malformed_request", "client": client_addr_str},
        )
        send_response(client_socket, bad_request_response(None, SECURITY_HEADERS))
        return None, b"", True

    if request is None:
        if WORKER_LOGGER.logger.isEnabledFor(logging.DEBUG):
            WORKER_LOGGER.debug(
                "Client disconnected",
                extra={"event": "client_disconnected", "client": client_addr_str},
            )
        return None, b"", True
    return request, buffer, False


def _process_request(
    request: HttpRequest, context: WorkerContext, client_socket: socket.socket
) -> bool:
    response = context.handler(request)
    if request.method == "HEAD":
        response.omit_body = True
    if context.lifecycle.is_draining():
        response.close_connection = True
    send_response(client_socket, response)
    return response.close_connection


def _prepare_socket(context: WorkerContext, client_socket: socket.socket) -> None:
    client_socket.settimeout(context.config.socket_timeout)
    if isinstance(client_socket, ssl.SSLSocket):
        client_socket.do_handshake()


@dataclass
class _WorkerResources:
    thread: threading.Thread
    client_socket: socket.socket
    client_addr_str: str


def _cleanup_worker(context: WorkerContext, resources: _WorkerResources) -> None:
    context.lifecycle.cleanup_worker(resources.thread)

    try:
        resources.client_socket.shutdown(socket.SHUT_WR)
    except OSError:
        pass
    resources.client_socket.close()

    WORKER_LOGGER.debug(
        "Socket closed",
        extra={"event": "socket_closed", "client": resources.client_addr_str},
    )
    clear_correlation_id()


def handle_client(
    client_socket: socket.socket,
    client_address: tuple[str, int],
    context: WorkerContext,
) -> None:
    """Process requests on a client socket until the connection is closed.

    The thread must already be registered with the lifecycle so shutdown
    can find it before it starts running.
    """
    buffer = b""
    current_thread = threading.current_thread()
    lifecycle = context.lifecycle
    client_addr_str = f"{client_address[0]}:{client_address[1]}"
    resources = _WorkerResources(current_thread, client_socket, client_addr_str)

    try:
        _prepare_socket(context, client_socket)
        while True:
            set_correlation_id(generate_correlation_id())

            if not lifecycle.mark_idle(current_thread):
                break

            request, buffer, should_terminate = _read_request_with_validation(
                client_socket, buffer, client_addr_str
            )
            lifecycle.mark_busy(current_thread)
            if should_terminate:
                break

            should_terminate_connection = _process_request(
                request, context, client_socket
            )

            WORKER_LOGGER.debug(
                "Request processing complete",
                extra={"event": "request_complete", "client": client_addr_str},
            )
            clear_correlation_id()

            if should_terminate_connection:
                break
    except TimeoutError:
        WORKER_LOGGER.debug(
            "Connection idle timeout",
            extra={"event": "connection_timeout", "client": client_addr_str},
        )
    except (ConnectionError, OSError) as error:
        WORKER_LOGGER.error(
            "Error handling client connection",
            extra={
                "event": "connection_error",
                "client": client_addr_str,
                "error_type": type(error).__name__,
            },
        )
    except Exception as error:  # pylint: disable=broad-except
        WORKER_LOGGER.error(
            "Unexpected error in worker",
            extra={
                "event": "worker_error",
                "client": client_addr_str,
                "error_type": type(error).__name__,
            },
            exc_info=True,
        )
    finally:
        _cleanup_worker(context, resources)
