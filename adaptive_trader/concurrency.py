"""
Concurrency Helpers
===================
Bounded executor for collaborator calls that must not block a cycle forever.
"""

from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Callable, Dict
import logging
import threading

from .exceptions import ExternalExecutionError, TradingEngineError

logger = logging.getLogger(__name__)


class CollaboratorPool:
    """
    Runs market-data and order calls with a timeout.

    A timed-out call is abandoned (its worker finishes in the background)
    and surfaces as ExternalExecutionError. Until it finishes, further calls
    with the same description fail fast instead of taking another worker.
    """

    def __init__(self, timeout: float = 10.0, max_workers: int = 4):
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="collaborator"
        )
        self._abandoned: Dict[str, Future] = {}
        self._lock = threading.Lock()

    def call(self, description: str, fn: Callable[..., Any], *args, **kwargs) -> Any:
        with self._lock:
            pending = self._abandoned.get(description)
            if pending is not None and not pending.done():
                raise ExternalExecutionError(f"{description} skipped: previous call still running")
            future = self._executor.submit(fn, *args, **kwargs)

        try:
            return future.result(timeout=self.timeout)
        except FutureTimeout:
            if not future.cancel():
                self._abandon(description, future)
            raise ExternalExecutionError(f"{description} timed out after {self.timeout}s")
        except TradingEngineError:
            raise
        except Exception as e:
            raise ExternalExecutionError(f"{description} failed: {e}") from e

    def pending(self) -> int:
        """Number of abandoned calls still occupying a worker."""
        with self._lock:
            return sum(1 for f in self._abandoned.values() if not f.done())

    def _abandon(self, description: str, future: Future):
        logger.warning(f"{description} still running after timeout; holding further calls")
        with self._lock:
            self._abandoned[description] = future
        future.add_done_callback(lambda f: self._release(description, f))

    def _release(self, description: str, future: Future):
        with self._lock:
            if self._abandoned.get(description) is future:
                del self._abandoned[description]

    def shutdown(self, wait: bool = False):
        self._executor.shutdown(wait=wait)
