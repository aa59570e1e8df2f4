"""Unit tests for the cleanup concurrency guard."""

import threading

import pytest

from audit_retention.retention.concurrency import CleanupGuard, get_process_guard
from audit_retention.retention.errors import ConcurrencyLimitError
from audit_retention.retention.schemas import CleanupOptions


class TestCleanupGuard:
    """Test permit accounting."""

    def test_rejects_invalid_size(self):
        with pytest.raises(ValueError):
            CleanupGuard(max_concurrent=0)

    def test_permit_counts_active_runs(self):
        guard = CleanupGuard(max_concurrent=2)

        with guard.permit():
            assert guard.active_runs == 1
            assert guard.available == 1

        assert guard.active_runs == 0
        assert guard.available == 2

    def test_saturated_guard_raises_without_waiting(self):
        guard = CleanupGuard(max_concurrent=1, retry_after_seconds=15)

        with guard.permit():
            with pytest.raises(ConcurrencyLimitError) as exc:
                with guard.permit(trigger="SCHEDULED"):
                    pass

        assert exc.value.retry_after_seconds == 15
        assert guard.active_runs == 0

    def test_permit_released_on_error(self):
        guard = CleanupGuard(max_concurrent=1)

        with pytest.raises(RuntimeError):
            with guard.permit():
                raise RuntimeError("boom")

        assert guard.try_acquire() is True
        guard.release()

    def test_process_guard_is_shared(self):
        assert get_process_guard() is get_process_guard(5)


class TestConcurrentRuns:
    """Test N+1 simultaneous runs against a guard of size N."""

    @pytest.mark.parametrize("max_concurrent", [1, 2])
    def test_never_more_than_n_active(self, max_concurrent):
        guard = CleanupGuard(max_concurrent=max_concurrent)
        workers = max_concurrent + 1
        barrier = threading.Barrier(workers)
        release = threading.Event()
        lock = threading.Lock()
        admitted = []
        rejected = []
        peak = [0]

        def worker():
            barrier.wait()
            try:
                with guard.permit():
                    with lock:
                        admitted.append(1)
                        peak[0] = max(peak[0], guard.active_runs)
                    release.wait(timeout=5)
            except ConcurrencyLimitError:
                with lock:
                    rejected.append(1)
                # All rejections are in; let the admitted runs finish
                if len(rejected) >= workers - max_concurrent:
                    release.set()

        threads = [threading.Thread(target=worker) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert len(rejected) >= 1
        assert len(admitted) + len(rejected) == workers
        assert peak[0] <= max_concurrent
        assert guard.active_runs == 0

    def test_engine_runs_share_one_guard(self, session_factory, retention_settings, seed_records):
        """Two engines on the same guard cannot run at the same time."""
        from audit_retention.retention.repository import AuditLogRepository
        from audit_retention.retention.service import CleanupEngine

        guard = CleanupGuard(max_concurrent=1)
        started = threading.Event()
        release = threading.Event()

        class SlowRepository(AuditLogRepository):
            def count_expired(self, action_type, cutoff, known_action_types=()):
                started.set()
                release.wait(timeout=5)
                return super().count_expired(action_type, cutoff, known_action_types)

        slow = CleanupEngine(session_factory, retention_settings, guard=guard, repository_class=SlowRepository)
        fast = CleanupEngine(session_factory, retention_settings, guard=guard)
        seed_records("BOOK_VIEWED", age_days=40)

        results = {}

        def run_slow():
            results["slow"] = slow.run_cleanup(CleanupOptions(action_type="BOOK_VIEWED", preview_only=True))

        thread = threading.Thread(target=run_slow)
        thread.start()
        assert started.wait(timeout=5)

        try:
            with pytest.raises(ConcurrencyLimitError):
                fast.run_cleanup(CleanupOptions(preview_only=True))
        finally:
            release.set()
            thread.join(timeout=10)

        assert results["slow"].total_matched == 1
        assert guard.active_runs == 0
