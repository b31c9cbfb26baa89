"""
Periodic driver for the sync engine.
"""

import logging
import threading

from calmirror.models import DiscoveryError
from calmirror.models import SyncStats

logger = logging.getLogger(__name__)


class PeriodicSync:
    """Run ``manager.sync()`` now and then every ``interval_seconds``.

    A failed pass is logged and the loop carries on; ``stop()`` ends the
    loop at the next wait. Passes never overlap: ``trigger()`` and the
    loop share one lock.
    """

    def __init__(self, manager, interval_seconds: float):
        if interval_seconds <= 0:
            raise ValueError("interval must be positive")
        self.manager = manager
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._pass_lock = threading.Lock()
        self._thread: threading.Thread | None = None

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def run_once(self) -> SyncStats | None:
        """Run one pass; returns None if the pass failed."""
        with self._pass_lock:
            try:
                return self.manager.sync()
            except DiscoveryError as e:
                logger.error("Sync pass failed: %s", e)
                return None
            except Exception:
                logger.exception("Sync pass failed")
                return None

    def run_forever(self) -> None:
        """Block until ``stop()`` is called."""
        logger.info("Periodic sync every %s seconds", self.interval_seconds)
        while not self._stop.is_set():
            self.run_once()
            if self._stop.wait(self.interval_seconds):
                break
        logger.info("Periodic sync stopped")

    def start(self) -> threading.Thread:
        """Run the loop in a daemon thread."""
        self._thread = threading.Thread(
            target=self.run_forever, name="calmirror-periodic", daemon=True
        )
        self._thread.start()
        return self._thread

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def trigger(self) -> threading.Thread:
        """Start an on-demand pass in the background and return its thread."""
        thread = threading.Thread(target=self.run_once, name="calmirror-trigger", daemon=True)
        thread.start()
        return thread
