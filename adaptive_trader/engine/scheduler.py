"""
Cycle Driver
============
Fixed-delay timer thread that runs one engine cycle per tick.
"""

from typing import Optional
import logging
import threading

logger = logging.getLogger(__name__)


class CycleDriver:
    """
    Calls `engine.run_cycle()`, waits `interval` seconds, repeats.

    Cycles never overlap: the next wait starts only after the previous
    cycle returns. A failing cycle is logged and the driver keeps going.
    """

    def __init__(self, engine, interval: float = 30.0):
        self.engine = engine
        self.interval = interval
        self.cycles_run = 0
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self):
        if self._thread is not None and self._thread.is_alive():
            logger.warning("Cycle driver already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="cycle-driver", daemon=True)
        self._thread.start()
        logger.info(f"Cycle driver started (every {self.interval}s)")

    def _loop(self):
        while not self._stop_event.is_set():
            try:
                self.engine.run_cycle()
                self.cycles_run += 1
            except Exception as e:
                logger.exception(f"Error in trading cycle: {e}")
            self._stop_event.wait(self.interval)

    def shutdown(self, timeout: float = None):
        """Stop ticking and wait for the in-flight cycle to finish."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Cycle driver stopped")

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def wait(self, timeout: float = None) -> bool:
        """Block until shutdown is requested. Returns True if it was."""
        return self._stop_event.wait(timeout)
