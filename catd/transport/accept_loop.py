"""Main connection acceptance loop."""

import errno
import logging
import socket
import threading
from typing import Optional

from catd.bootstrap.config import SECURITY_HEADERS, ServerConfig
from catd.domain.correlation_id import CorrelationLoggerAdapter
from catd.domain.errors import ServiceError
from catd.domain.response_builders import draining_response
from catd.lifecycle.shutdown import StopEvent
from catd.lifecycle.state import ServerLifecycle
from catd.pipeline.io import send_response
from catd.transport.context import RequestHandler, WorkerContext
from catd.transport.worker import handle_client

ACCEPT_LOGGER = CorrelationLoggerAdapter(logging.getLogger("catd.transport.accept"), {})

ACCEPT_RETRY_SECONDS = 0.05
ABORT_JOIN_SECONDS = 1.0
FATAL_ACCEPT_ERRNOS = {errno.EBADF, errno.EINVAL, errno.ENOTSOCK}


def _reject_draining(client_socket: socket.socket) -> None:
    try:
        send_response(client_socket, draining_response(SECURITY_HEADERS))
    except OSError:
        pass
    finally:
        client_socket.close()


def _handle_accepted_client(
    client_socket: socket.socket,
    client_address: tuple[str, int],
    context: WorkerContext,
) -> None:
    """Start a worker thread for a newly accepted connection."""
    if ACCEPT_LOGGER.logger.isEnabledFor(logging.DEBUG):
        ACCEPT_LOGGER.debug(
            "Client connection accepted",
            extra={
                "event": "client_accepted",
                "client": f"{client_address[0]}:{client_address[1]}",
            },
        )
    thread = threading.Thread(
        target=handle_client,
        args=(client_socket, client_address, context),
        daemon=False,
    )
    context.lifecycle.register_worker(thread, client_socket)
    try:
        thread.start()
    except RuntimeError as error:
        context.lifecycle.cleanup_worker(thread)
        client_socket.close()
        ACCEPT_LOGGER.critical(
            "Failed to start worker thread",
            extra={"event": "worker_start_failed", "error_type": type(error).__name__},
        )
        raise ServiceError(f"couldn't start worker thread: {error}") from error


def _accept_until_stopped(
    listener: socket.socket, context: WorkerContext, stop_event: StopEvent
) -> None:
    while not stop_event.is_fired():
        try:
            client_socket, client_address = listener.accept()
        except socket.timeout:
            continue
        except OSError as error:
            if stop_event.is_fired():
                break
            if listener.fileno() == -1 or error.errno in FATAL_ACCEPT_ERRNOS:
                ACCEPT_LOGGER.critical(
                    "Listener failed",
                    extra={
                        "event": "accept_failed",
                        "error_type": type(error).__name__,
                        "errno": error.errno,
                    },
                )
                raise ServiceError(f"accept failed: {error}") from error
            ACCEPT_LOGGER.error(
                "Socket accept failed",
                extra={
                    "event": "accept_error",
                    "error_type": type(error).__name__,
                    "errno": error.errno,
                },
            )
            stop_event.wait(ACCEPT_RETRY_SECONDS)
            continue

        if stop_event.is_fired():
            _reject_draining(client_socket)
            break

        _handle_accepted_client(client_socket, client_address, context)


def _close_listener(listener: socket.socket) -> Optional[OSError]:
    try:
        listener.close()
    except OSError as error:
        ACCEPT_LOGGER.error(
            "Failed to close listener",
            extra={"event": "listener_close_failed", "error_type": type(error).__name__},
        )
        return error
    return None


def _drain_workers(lifecycle: ServerLifecycle, config: ServerConfig) -> None:
    ACCEPT_LOGGER.info(
        "Waiting for active connections to complete",
        extra={
            "event": "shutdown_waiting",
            "grace_seconds": config.shutdown_grace_seconds,
            "active_workers": lifecycle.active_worker_count(),
        },
    )
    if lifecycle.wait_for_workers(config.shutdown_grace_seconds):
        return
    aborted = lifecycle.abort_workers()
    ACCEPT_LOGGER.warning(
        "Forcibly closed remaining connections",
        extra={"event": "connections_aborted", "remaining_workers": aborted},
    )
    lifecycle.wait_for_workers(ABORT_JOIN_SECONDS)


def run_server(
    listener: socket.socket,
    handler: RequestHandler,
    stop_event: StopEvent,
    config: ServerConfig,
    lifecycle: Optional[ServerLifecycle] = None,
) -> None:
    """Serve connections on ``listener`` until ``stop_event`` fires.

    Each connection gets its own worker thread calling ``handler`` once per
    request. After the stop event fires no further connections are accepted,
    the listener is closed and in-flight requests get
    ``config.shutdown_grace_seconds`` to finish before their connections are
    shut down. Returns normally after a clean stop.

    Raises:
        ServiceError: if the listener is unusable or fails while serving, or
            cannot be closed.
    """
    if lifecycle is None:
        lifecycle = ServerLifecycle()
    if listener.fileno() == -1:
        lifecycle.mark_stopped()
        raise ServiceError("listener is closed")

    context = WorkerContext(handler=handler, lifecycle=lifecycle, config=config)
    host, port = listener.getsockname()[:2]
    lifecycle.mark_serving()
    ACCEPT_LOGGER.info(
        "Server listening for connections",
        extra={"event": "server_listening", "host": host, "port": port},
    )

    failure: Optional[ServiceError] = None
    try:
        _accept_until_stopped(listener, context, stop_event)
    except ServiceError as error:
        failure = error
    finally:
        lifecycle.begin_draining()
        close_error = _close_listener(listener)
        _drain_workers(lifecycle, config)
        lifecycle.mark_stopped()
        ACCEPT_LOGGER.info("Server shutdown complete", extra={"event": "server_stopped"})

    if failure is not None:
        raise failure
    if close_error is not None:
        raise ServiceError(f"couldn't close listener: {close_error}") from close_error
