"""Service lifecycle state and worker tracking.

The service moves ``unbound -> serving -> draining -> stopped``. A service
that fails before it starts serving goes straight to ``stopped``.
"""

import logging
import socket
import threading
import time
from enum import Enum
from typing import Optional

from catd.domain.correlation_id import CorrelationLoggerAdapter
from catd.domain.errors import LifecycleError

LIFECYCLE_LOGGER = CorrelationLoggerAdapter(logging.getLogger("catd.lifecycle"), {})


class ServiceState(Enum):
    UNBOUND = "unbound"
    SERVING = "serving"
    DRAINING = "draining"
    STOPPED = "stopped"


_TRANSITIONS = {
    ServiceState.UNBOUND: {ServiceState.SERVING, ServiceState.STOPPED},
    ServiceState.SERVING: {ServiceState.DRAINING},
    ServiceState.DRAINING: {ServiceState.STOPPED},
    ServiceState.STOPPED: set(),
}


class _Worker:
    __slots__ = ("client_socket", "idle")

    def __init__(self, client_socket: Optional[socket.socket]) -> None:
        self.client_socket = client_socket
        self.idle = False


class ServerLifecycle:
    """Manages service state and worker thread tracking."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = ServiceState.UNBOUND
        self._draining_event = threading.Event()
        self._workers: dict[threading.Thread, _Worker] = {}

    @property
    def state(self) -> ServiceState:
        with self._lock:
            return self._state

    def _transition(self, target: ServiceState) -> None:
        with self._lock:
            previous = self._state
            if target not in _TRANSITIONS[previous]:
                raise LifecycleError(
                    f"illegal transition {previous.value} -> {target.value}"
                )
            self._state = target
        LIFECYCLE_LOGGER.info(
            "Service state changed",
            extra={
                "event": "state_changed",
                "previous_state": previous.value,
                "state": target.value,
            },
        )

    def mark_serving(self) -> None:
        """Record that the listener is bound and accepting."""
        self._transition(ServiceState.SERVING)

    def begin_draining(self) -> None:
        """Stop taking new work and close idle keep-alive connections."""
        self._transition(ServiceState.DRAINING)
        self._draining_event.set()
        LIFECYCLE_LOGGER.info("Beginning graceful shutdown", extra={"event": "draining"})
        with self._lock:
            idle_sockets = [
                worker.client_socket
                for worker in self._workers.values()
                if worker.idle and worker.client_socket is not None
            ]
        for client_socket in idle_sockets:
            _shutdown_quietly(client_socket, socket.SHUT_RD)

    def mark_stopped(self) -> None:
        """Record the terminal state."""
        self._transition(ServiceState.STOPPED)

    def is_draining(self) -> bool:
        """Check if the server is in draining mode."""
        return self._draining_event.is_set()

    def register_worker(
        self, thread: threading.Thread, client_socket: Optional[socket.socket] = None
    ) -> None:
        """Register a worker thread for tracking."""
        with self._lock:
            self._workers[thread] = _Worker(client_socket)

    def cleanup_worker(self, thread: threading.Thread) -> None:
        """Remove a worker thread from tracking."""
        with self._lock:
            self._workers.pop(thread, None)

    def active_worker_count(self) -> int:
        """Return the number of currently tracked worker threads."""
        with self._lock:
            return len(self._workers)

    def mark_idle(self, thread: threading.Thread) -> bool:
        """Flag a worker as waiting for its next request.

        Returns False when draining has already begun, in which case the
        worker should close its connection instead of reading again.
        """
        with self._lock:
            worker = self._workers.get(thread)
            if worker is not None:
                worker.idle = True
            return not self._draining_event.is_set()

    def mark_busy(self, thread: threading.Thread) -> None:
        """Flag a worker as handling a request."""
        with self._lock:
            worker = self._workers.get(thread)
            if worker is not None:
                worker.idle = False

    def wait_for_workers(self, timeout: float) -> bool:
        """Wait for all worker threads to complete within the timeout."""
        deadline = time.monotonic() + timeout
        while True:
            with self._lock:
                for thread in [t for t in self._workers if not t.is_alive()]:
                    del self._workers[thread]
                active_workers = list(self._workers)
            if not active_workers:
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                LIFECYCLE_LOGGER.warning(
                    "Shutdown timeout exceeded",
                    extra={
                        "event": "grace_exceeded",
                        "remaining_workers": len(active_workers),
                    },
                )
                return False
            for worker in active_workers:
                worker.join(timeout=min(0.1, remaining))
                if time.monotonic() >= deadline:
                    break

    def abort_workers(self) -> int:
        """Forcibly shut down the connections of workers still running."""
        with self._lock:
            sockets = [
                worker.client_socket
                for worker in self._workers.values()
                if worker.client_socket is not None
            ]
        for client_socket in sockets:
            _shutdown_quietly(client_socket, socket.SHUT_RDWR)
        return len(sockets)


def _shutdown_quietly(client_socket: socket.socket, how: int) -> None:
    try:
        client_socket.shutdown(how)
    except OSError:
        pass
