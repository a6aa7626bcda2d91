import logging
import signal
import threading
from types import FrameType

SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)


class ShutdownCoordinator:
    """Turns the first termination signal into the shared stop event."""

    def __init__(self, stop_event: threading.Event) -> None:
        self._stop_event = stop_event
        # reentrant: a second signal can interrupt the handler in the main thread
        self._lock = threading.RLock()
        self._reason: str | None = None
        self._previous: dict[int, object] = {}

    @property
    def reason(self) -> str | None:
        with self._lock:
            return self._reason

    def install(self) -> None:
        for signum in SHUTDOWN_SIGNALS:
            self._previous[signum] = signal.signal(signum, self._handle_signal)

    def restore(self) -> None:
        for signum, handler in self._previous.items():
            signal.signal(signum, handler)
        self._previous.clear()

    def _handle_signal(self, signum: int, frame: FrameType | None) -> None:
        self.trigger(f"received signal {signal.Signals(signum).name}")

    def trigger(self, reason: str) -> bool:
        with self._lock:
            if self._reason is not None:
                logging.info("Ignoring %s, already shutting down", reason)
                return False
            self._reason = reason
        logging.info("%s, waiting to shutdown", reason.capitalize())
        self._stop_event.set()
        return True

    def wait(self) -> str:
        self._stop_event.wait()
        # stop event may have been set by a failing task instead of a signal
        return self.reason or "stop requested"
