"""Background cleanup loop.

A single daemon thread runs the cleanup engine every
cleanup_interval_hours. The loop is an explicit state machine:

    IDLE --(timer expires | trigger())--> RUNNING --(run returns)--> IDLE
    any state --(stop())--> STOPPED

The stop event doubles as the engine's cancel token, so shutdown is
honored between policies or batches, never mid-batch.
"""

import logging
import threading
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

from ..models.base import utcnow
from ..observability.request_id import set_request_id
from .errors import ConcurrencyLimitError
from .lifecycle import ArchiveLifecycleManager
from .schemas import CleanupOptions, CleanupReport, CleanupTrigger, SchedulerStatus
from .service import CleanupEngine

logger = logging.getLogger(__name__)

# Back-off after a run that crashed instead of returning a report
ERROR_BACKOFF_SECONDS = 3600

# Delay before the first run after start()
INITIAL_DELAY_SECONDS = 60


class SchedulerState(str, Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    STOPPED = "STOPPED"


class CleanupScheduler:
    """Cancellable timer loop around CleanupEngine.run_cleanup.

    Runs that find the concurrency guard saturated are skipped until the
    next interval. A run that raises is logged and retried after a shorter
    back-off; the loop itself never dies.
    """

    def __init__(
        self,
        engine: CleanupEngine,
        lifecycle: Optional[ArchiveLifecycleManager] = None,
        initial_delay_seconds: float = INITIAL_DELAY_SECONDS,
        error_backoff_seconds: float = ERROR_BACKOFF_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.engine = engine
        self.lifecycle = lifecycle
        self.initial_delay_seconds = initial_delay_seconds
        self.error_backoff_seconds = error_backoff_seconds
        self.clock = clock

        self._state = SchedulerState.IDLE
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self.last_report: Optional[CleanupReport] = None
        self.last_run_at: Optional[datetime] = None
        self.next_run_at: Optional[datetime] = None
        self.runs_completed = 0
        self.runs_skipped = 0

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def interval_seconds(self) -> float:
        return self.engine.settings.cleanup_interval_hours * 3600

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        """Start the background loop.

        Returns:
            False when cleanup is disabled in configuration or the loop already runs
        """
        if not self.engine.settings.cleanup_enabled:
            logger.info("Automatic audit cleanup disabled; scheduler not started")
            return False
        if self.is_running:
            return False

        self._stop.clear()
        self._wake.clear()
        self._state = SchedulerState.IDLE
        self._thread = threading.Thread(
            target=self._loop, name="audit-cleanup-scheduler", daemon=True
        )
        self._thread.start()

        logger.info(
            f"Audit cleanup scheduler started (every {self.engine.settings.cleanup_interval_hours}h)"
        )
        return True

    def stop(self, timeout: Optional[float] = 30.0) -> None:
        """Stop the loop and cancel an in-flight run at its next checkpoint."""
        self._stop.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("Audit cleanup scheduler did not stop within timeout")
        self._thread = None
        self._state = SchedulerState.STOPPED
        self.next_run_at = None
        logger.info("Audit cleanup scheduler stopped")

    def trigger(self) -> None:
        """Queue an immediate run. Repeated calls before it starts collapse into one."""
        self._wake.set()

    def run_once(self, trigger: CleanupTrigger = CleanupTrigger.SCHEDULED) -> Optional[CleanupReport]:
        """Execute one cleanup cycle in the calling thread.

        Returns:
            The report, or None when the run was skipped by the concurrency guard
        """
        self._state = SchedulerState.RUNNING
        try:
            try:
                report = self.engine.run_cleanup(
                    CleanupOptions(), trigger=trigger, cancel_event=self._stop
                )
            except ConcurrencyLimitError:
                self.runs_skipped += 1
                logger.info("Scheduled audit cleanup skipped: another run is in progress")
                return None

            self.last_report = report
            self.last_run_at = report.completed_at
            self.runs_completed += 1

            if self.lifecycle is not None:
                self._purge_archives()

            return report
        finally:
            if self._state == SchedulerState.RUNNING:
                self._state = SchedulerState.IDLE

    def _purge_archives(self) -> None:
        try:
            self.lifecycle.purge_expired(self.engine.settings)
        except OSError as e:
            logger.error(f"Automatic archive purge failed: {e}", exc_info=True)

    def _wait(self, seconds: float) -> bool:
        """Sleep until timeout, trigger() or stop(). Returns True when stopping."""
        self.next_run_at = self.clock() + timedelta(seconds=seconds)
        self._wake.wait(timeout=seconds)
        self._wake.clear()
        return self._stop.is_set()

    def _loop(self) -> None:
        set_request_id("audit-cleanup-scheduler")
        delay = self.initial_delay_seconds

        while not self._stop.is_set():
            if self._wait(delay):
                break

            try:
                self.run_once()
                delay = self.interval_seconds
            except Exception as e:
                self._state = SchedulerState.IDLE
                delay = min(self.error_backoff_seconds, self.interval_seconds)
                logger.error(
                    f"Scheduled audit cleanup crashed; retrying in {delay:.0f}s",
                    exc_info=True,
                    extra={"error_type": type(e).__name__}
                )

        self._state = SchedulerState.STOPPED

    def status(self) -> SchedulerStatus:
        report = self.last_report
        return SchedulerStatus(
            state=self._state.value,
            enabled=self.engine.settings.cleanup_enabled,
            interval_hours=self.engine.settings.cleanup_interval_hours,
            last_run_at=self.last_run_at,
            next_run_at=self.next_run_at,
            last_run_id=report.run_id if report else None,
            last_run_deleted=report.total_deleted if report else None,
            last_run_had_errors=report.has_errors if report else None,
            runs_completed=self.runs_completed,
            runs_skipped=self.runs_skipped,
            active_runs=self.engine.guard.active_runs,
        )
