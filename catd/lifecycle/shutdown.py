"""Stop coordination between the timeout and OS stop signals.

``StopEvent`` is fired at most once; whichever trigger gets there first wins
and every later ``fire`` is a no-op returning False. ``ShutdownCoordinator``
runs one thread that waits for either a delivered signal or the configured
timeout and fires the event with the winning reason.
"""

import logging
import signal
import threading
from typing import Callable, Iterable, Optional

from catd.domain.correlation_id import CorrelationLoggerAdapter

SHUTDOWN_LOGGER = CorrelationLoggerAdapter(logging.getLogger("catd.shutdown"), {})

STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)

REASON_TIMEOUT = "timeout"
REASON_SIGNAL = "signal"


class StopEvent:
    """One-shot stop notification safe to fire from several threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._reason: Optional[str] = None

    def fire(self, reason: str) -> bool:
        """Fire the event. Only the first call returns True."""
        with self._lock:
            if self._event.is_set():
                return False
            self._reason = reason
            self._event.set()
        SHUTDOWN_LOGGER.info(
            "Stop event fired", extra={"event": "stop_fired", "reason": reason}
        )
        return True

    def is_fired(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until fired or until ``timeout`` seconds pass."""
        return self._event.wait(timeout)

    @property
    def reason(self) -> Optional[str]:
        with self._lock:
            return self._reason


class ShutdownCoordinator:
    """Races a timeout against an OS stop signal to fire a StopEvent.

    A ``timeout`` of zero disables the timeout trigger. Signals reach the
    coordinator through ``notify_signal``, which ``install_signal_handlers``
    wires to SIGINT and SIGTERM; tests call it directly.
    """

    def __init__(self, stop_event: StopEvent, timeout: float = 0.0) -> None:
        if timeout < 0:
            raise ValueError("timeout cannot be negative")
        self.stop_event = stop_event
        self.timeout = timeout
        self._signal_received = threading.Event()
        self._closed = threading.Event()
        self._signum: Optional[int] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def state(self) -> str:
        return "fired" if self.stop_event.is_fired() else "armed"

    def start(self) -> None:
        """Start the thread waiting for the first trigger."""
        if self._thread is not None:
            raise RuntimeError("coordinator already started")
        self._thread = threading.Thread(
            target=self._race, name="catd-shutdown", daemon=True
        )
        self._thread.start()
        SHUTDOWN_LOGGER.debug(
            "Shutdown coordinator armed",
            extra={"event": "coordinator_armed", "timeout_seconds": self.timeout},
        )

    def _race(self) -> None:
        wait_timeout = self.timeout if self.timeout > 0 else None
        signalled = self._signal_received.wait(wait_timeout)
        if self._closed.is_set():
            return
        if signalled:
            SHUTDOWN_LOGGER.info(
                "Received shutdown signal",
                extra={"event": "signal_received", "signal": self._signum},
            )
            self.stop_event.fire(REASON_SIGNAL)
        else:
            SHUTDOWN_LOGGER.info(
                "Timeout elapsed",
                extra={"event": "timeout_elapsed", "timeout_seconds": self.timeout},
            )
            self.stop_event.fire(REASON_TIMEOUT)

    def notify_signal(self, signum: int, _frame=None) -> None:
        """Signal trigger. Safe to call from a signal handler, and repeatedly."""
        if self._signum is None:
            self._signum = signum
        self._signal_received.set()

    def install_signal_handlers(
        self, signals: Iterable[int] = STOP_SIGNALS
    ) -> dict[int, Callable]:
        """Route OS stop signals to ``notify_signal``; return previous handlers.

        Must be called from the main thread.
        """
        previous = {}
        for signum in signals:
            previous[signum] = signal.signal(signum, self.notify_signal)
        return previous

    def close(self) -> None:
        """Release the waiting thread without firing the stop event."""
        self._closed.set()
        self._signal_received.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=1.0)
