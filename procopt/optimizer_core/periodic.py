"""Periodic Workers - Background threads running an action on a fixed cadence"""

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicWorker:
    """Runs ``action`` every ``interval`` seconds on a daemon thread

    Each cycle is isolated: an exception is logged and the loop keeps going.
    """

    def __init__(self, name: str, interval: float, action: Callable[[], object]):
        if interval <= 0:
            raise ValueError(f"interval must be positive for worker '{name}'")
        self.name = name
        self.interval = interval
        self.action = action
        self.cycles = 0
        self.failures = 0
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name=f"procopt-{self.name}",
            daemon=True
        )
        self._thread.start()
        logger.debug(f"Periodic worker '{self.name}' started (interval {self.interval:.3f}s)")

    def stop(self, timeout: float = 5.0):
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        self._thread = None
        logger.debug(f"Periodic worker '{self.name}' stopped after {self.cycles} cycles")

    def _run_loop(self):
        while not self._stop_event.wait(self.interval):
            try:
                self.action()
            except Exception as e:
                self.failures += 1
                logger.error(f"Error in periodic worker '{self.name}': {e}")
            finally:
                self.cycles += 1
