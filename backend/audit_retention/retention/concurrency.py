"""Process-wide bound on simultaneous cleanup runs.

Scheduled, forced and manual runs all take a permit from the same guard.
Acquisition never waits: a saturated guard raises ConcurrencyLimitError,
which the control surface turns into HTTP 429 and the scheduler turns into
a skipped cycle.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from ..observability.metrics import retention_active_runs, retention_guard_rejections_total
from .errors import ConcurrencyLimitError

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER_SECONDS = 60


class CleanupGuard:
    """Bounded permit pool for cleanup runs.

    Example:
        guard = CleanupGuard(max_concurrent=1)
        with guard.permit(trigger="MANUAL"):
            engine.run(...)
    """

    def __init__(self, max_concurrent: int = 1, retry_after_seconds: int = DEFAULT_RETRY_AFTER_SECONDS):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self.retry_after_seconds = retry_after_seconds
        self._semaphore = threading.BoundedSemaphore(max_concurrent)
        self._lock = threading.Lock()
        self._active = 0

    @property
    def active_runs(self) -> int:
        return self._active

    @property
    def available(self) -> int:
        return self.max_concurrent - self._active

    def try_acquire(self) -> bool:
        """Take a permit without waiting. Returns False when saturated."""
        if not self._semaphore.acquire(blocking=False):
            return False
        with self._lock:
            self._active += 1
        retention_active_runs.inc()
        return True

    def release(self) -> None:
        with self._lock:
            self._active -= 1
        retention_active_runs.dec()
        self._semaphore.release()

    @contextmanager
    def permit(self, trigger: str = "MANUAL") -> Iterator[None]:
        """Hold a permit for the duration of the block.

        Raises:
            ConcurrencyLimitError: All permits are in use
        """
        if not self.try_acquire():
            retention_guard_rejections_total.labels(trigger=trigger.lower()).inc()
            logger.warning(
                f"Cleanup run rejected: {self.max_concurrent} run(s) already in progress",
                extra={"trigger": trigger}
            )
            raise ConcurrencyLimitError(
                f"Maximum of {self.max_concurrent} concurrent cleanup run(s) reached",
                retry_after_seconds=self.retry_after_seconds,
            )
        try:
            yield
        finally:
            self.release()


_process_guard: Optional[CleanupGuard] = None
_process_guard_lock = threading.Lock()


def get_process_guard(max_concurrent: int = 1) -> CleanupGuard:
    """Shared guard for every engine in this process.

    The size is fixed by the first call.
    """
    global _process_guard
    with _process_guard_lock:
        if _process_guard is None:
            _process_guard = CleanupGuard(max_concurrent)
        return _process_guard
