"""Cleanup engine for audit log retention.

This service implements the core retention logic:
- Resolve (action type, retention days) pairs from a policy snapshot
- Count expired records per pair (preview stops here)
- Optionally archive the full expired set before deleting it
- Delete in bounded batches, one transaction per batch
- Write one meta-audit record summarizing the run
- Flag unusually large runs for alerting

Failure isolation: an error while processing one action type is folded into
that action type's PolicyResult and the run moves on to the next one.
run_cleanup never raises once it holds a concurrency permit.

All operations are idempotent: a second run with no new writes deletes
nothing.
"""

import logging
import threading
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple, Type

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..audit.service import (
    SYSTEM_IP_ADDRESS,
    SYSTEM_USER_ID,
    AuditActions,
    log_audit_event,
)
from ..models.base import utcnow
from ..observability.metrics import (
    retention_large_cleanup_alerts_total,
    retention_policy_errors_total,
    retention_records_deleted_total,
    retention_records_matched_total,
    retention_run_duration_seconds,
    retention_runs_total,
)
from .archive import ArchiveWriter
from .concurrency import CleanupGuard
from .errors import ArchiveWriteError, StorageError
from .policy import RetentionPolicy
from .repository import AuditLogRepository
from .schemas import (
    CleanupOptions,
    CleanupReport,
    CleanupTrigger,
    ExportRequest,
    PolicyError,
    PolicyResult,
    RetentionSettings,
)

logger = logging.getLogger(__name__)

INTERNAL_ERROR = "InternalError"

META_AUDIT_ACTIONS = {
    CleanupTrigger.SCHEDULED: AuditActions.AUDIT_CLEANUP,
    CleanupTrigger.FORCED: AuditActions.FORCED_AUTO_CLEANUP,
    CleanupTrigger.MANUAL: AuditActions.MANUAL_AUDIT_CLEANUP,
}


class _Cancelled(Exception):
    """Raised internally when the cancel event is set between batches."""


def _chunks(ids: Sequence[int], size: int) -> List[List[int]]:
    return [list(ids[i:i + size]) for i in range(0, len(ids), size)]


class CleanupEngine:
    """Executes retention cleanup runs against the audit store.

    The engine holds the current RetentionSettings; each run takes a
    snapshot of it at start, so update_settings() only affects later runs.

    Every run needs a permit from the shared CleanupGuard.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        settings: RetentionSettings,
        guard: Optional[CleanupGuard] = None,
        archive_writer: Optional[ArchiveWriter] = None,
        clock: Callable[[], datetime] = utcnow,
        repository_class: Type[AuditLogRepository] = AuditLogRepository,
    ):
        """Initialize cleanup engine.

        Args:
            session_factory: Creates database sessions (one per policy, one for the meta-audit)
            settings: Initial retention configuration
            guard: Shared concurrency guard (defaults to one sized from settings)
            archive_writer: Fixed archive writer (defaults to one built from each run's settings)
            clock: Source of "now"
            repository_class: Audit store access
        """
        self.session_factory = session_factory
        self._settings = settings
        self.guard = guard or CleanupGuard(settings.max_concurrent_cleanup_tasks)
        self.archive_writer = archive_writer
        self.clock = clock
        self.repository_class = repository_class

    @property
    def settings(self) -> RetentionSettings:
        return self._settings

    def update_settings(self, settings: RetentionSettings) -> None:
        """Replace the configuration used by subsequent runs."""
        self._settings = settings
        logger.info("Retention settings updated; effective from the next run")

    def current_policy(self) -> RetentionPolicy:
        return RetentionPolicy.from_settings(self._settings)

    def run_cleanup(
        self,
        options: Optional[CleanupOptions] = None,
        trigger: CleanupTrigger = CleanupTrigger.MANUAL,
        actor_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> CleanupReport:
        """Run one cleanup.

        Args:
            options: What to process (default: every policy, configured archiving)
            trigger: SCHEDULED, FORCED or MANUAL (selects the meta-audit action)
            actor_id: User who requested the run (SYSTEM when None)
            ip_address: Requesting client address
            cancel_event: Checked between policies and between batches

        Returns:
            CleanupReport with one PolicyResult per processed action type

        Raises:
            ConcurrencyLimitError: No permit available (nothing was processed)
        """
        options = options or CleanupOptions()

        with self.guard.permit(trigger.value):
            return self._execute(options, trigger, actor_id, ip_address, cancel_event)

    def _execute(
        self,
        options: CleanupOptions,
        trigger: CleanupTrigger,
        actor_id: Optional[str],
        ip_address: Optional[str],
        cancel_event: Optional[threading.Event],
    ) -> CleanupReport:
        settings = self._settings
        policy = RetentionPolicy.from_settings(settings)
        pairs = self.resolve_pairs(policy, options)
        known_action_types = policy.known_action_types

        archive_before_delete = (
            settings.archive_before_delete
            if options.archive_before_delete is None
            else options.archive_before_delete
        )
        writer = None
        if archive_before_delete and not options.preview_only:
            writer = self.archive_writer or ArchiveWriter.from_settings(settings)

        report = CleanupReport(
            run_id=uuid.uuid4().hex,
            trigger=trigger,
            started_at=self.clock(),
            is_preview=options.preview_only,
        )

        logger.info(
            f"Starting audit cleanup run {report.run_id} ({len(pairs)} policies)",
            extra={
                "run_id": report.run_id,
                "trigger": trigger.value,
                "preview": options.preview_only,
                "archive_before_delete": archive_before_delete,
            }
        )

        for action_type, days in pairs:
            if cancel_event is not None and cancel_event.is_set():
                report.cancelled = True
                logger.info(
                    f"Cleanup run {report.run_id} cancelled before {action_type}",
                    extra={"run_id": report.run_id, "action_type": action_type}
                )
                break

            result = self._process_policy(
                action_type=action_type,
                days=days,
                known_action_types=known_action_types,
                batch_size=settings.batch_size,
                preview_only=options.preview_only,
                writer=writer,
                cancel_event=cancel_event,
                run_id=report.run_id,
            )
            report.policies.append(result)

            if result.cancelled:
                report.cancelled = True
                break

        report.completed_at = self.clock()

        if not report.is_preview and report.total_deleted > 0:
            self._write_meta_audit(report, actor_id, ip_address)

        if (
            not report.is_preview
            and settings.alert_on_large_cleanup
            and report.total_deleted > settings.large_cleanup_threshold
        ):
            report.alert = True
            retention_large_cleanup_alerts_total.inc()
            logger.warning(
                f"Large audit cleanup: {report.total_deleted} records deleted "
                f"(threshold {settings.large_cleanup_threshold})",
                extra={
                    "run_id": report.run_id,
                    "total_deleted": report.total_deleted,
                    "breakdown": report.per_action_breakdown,
                }
            )

        self._record_run_metrics(report)

        logger.info(
            f"Audit cleanup run {report.run_id} finished: "
            f"{report.total_matched} matched, {report.total_deleted} deleted "
            f"in {report.duration_ms:.0f}ms",
            extra={
                "run_id": report.run_id,
                "trigger": trigger.value,
                "total_deleted": report.total_deleted,
                "duration_ms": round(report.duration_ms, 2),
                "has_errors": report.has_errors,
                "cancelled": report.cancelled,
            }
        )

        if report.has_errors:
            logger.error(
                f"Audit cleanup run {report.run_id} completed with errors",
                extra={
                    "run_id": report.run_id,
                    "failed_policies": [p.action_type for p in report.policies if p.error],
                }
            )

        return report

    @staticmethod
    def resolve_pairs(policy: RetentionPolicy, options: CleanupOptions) -> List[Tuple[str, int]]:
        """(action type, days) pairs for a run.

        "all" (or no action type) processes every policy, with the override
        applied to each one when given.
        """
        if options.targets_all:
            return policy.pairs(options.retention_days_override)

        action_type = options.action_type.strip()
        days = options.retention_days_override or policy.resolve(action_type)
        return [(action_type, days)]

    def _process_policy(
        self,
        action_type: str,
        days: int,
        known_action_types: Sequence[str],
        batch_size: int,
        preview_only: bool,
        writer: Optional[ArchiveWriter],
        cancel_event: Optional[threading.Event],
        run_id: str,
    ) -> PolicyResult:
        cutoff = self.clock() - timedelta(days=days)
        result = PolicyResult(action_type=action_type, retention_days=days, cutoff_date=cutoff)
        log_extra = {
            "run_id": run_id,
            "action_type": action_type,
            "retention_days": days,
            "cutoff_date": cutoff.isoformat(),
        }

        db = self.session_factory()
        try:
            repo = self.repository_class(db)

            result.matched_count = repo.count_expired(action_type, cutoff, known_action_types)
            retention_records_matched_total.labels(action_type=action_type).inc(result.matched_count)

            logger.debug(
                f"{result.matched_count} {action_type} records older than {cutoff.isoformat()}",
                extra={**log_extra, "matched_count": result.matched_count}
            )

            if preview_only or result.matched_count == 0:
                return result

            if writer is not None:
                records = repo.fetch_expired(action_type, cutoff, known_action_types)
                archive_path = writer.write_archive(action_type, records, cutoff)
                result.archived = True
                result.archive_path = str(archive_path)

                # Delete exactly what was archived
                archived_ids = [r.id for r in records]
                for index, batch in enumerate(_chunks(archived_ids, batch_size)):
                    if index > 0:
                        self._check_cancelled(cancel_event)
                    result.deleted_count += self._delete_batch(db, repo, batch)
            else:
                first = True
                while True:
                    if not first:
                        self._check_cancelled(cancel_event)
                    first = False
                    ids = repo.fetch_expired_ids(
                        action_type, cutoff, known_action_types, limit=batch_size
                    )
                    if not ids:
                        break
                    deleted = self._delete_batch(db, repo, ids)
                    result.deleted_count += deleted
                    if deleted == 0:
                        break

            if result.deleted_count:
                logger.info(
                    f"Deleted {result.deleted_count} {action_type} records (> {days} days)",
                    extra={**log_extra, "deleted_count": result.deleted_count}
                )

        except _Cancelled:
            result.cancelled = True
            logger.info(
                f"Cleanup of {action_type} cancelled after {result.deleted_count} deletions",
                extra={**log_extra, "deleted_count": result.deleted_count}
            )

        except ArchiveWriteError as e:
            db.rollback()
            result.error = PolicyError(type=ArchiveWriteError.error_type, message=str(e))
            logger.error(
                f"Archive failed for {action_type}; its records were not deleted",
                extra={**log_extra, "error_type": ArchiveWriteError.error_type}
            )

        except SQLAlchemyError as e:
            db.rollback()
            result.error = PolicyError(type=StorageError.error_type, message=str(e))
            logger.error(
                f"Storage error while cleaning {action_type}",
                exc_info=True,
                extra={**log_extra, "error_type": StorageError.error_type}
            )

        except Exception as e:
            db.rollback()
            result.error = PolicyError(type=INTERNAL_ERROR, message=str(e))
            logger.error(
                f"Unexpected error while cleaning {action_type}",
                exc_info=True,
                extra={**log_extra, "error_type": INTERNAL_ERROR}
            )

        finally:
            db.close()

        if result.deleted_count:
            retention_records_deleted_total.labels(action_type=action_type).inc(result.deleted_count)
        if result.error is not None:
            retention_policy_errors_total.labels(error_type=result.error.type).inc()

        return result

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise _Cancelled()

    @staticmethod
    def _delete_batch(db: Session, repo: AuditLogRepository, ids: Sequence[int]) -> int:
        """Delete one batch in its own transaction."""
        deleted = repo.delete_ids(ids)
        db.commit()
        return deleted

    def _write_meta_audit(
        self,
        report: CleanupReport,
        actor_id: Optional[str],
        ip_address: Optional[str],
    ) -> None:
        """Record the run in the audit log. Failures are logged, never raised."""
        action = META_AUDIT_ACTIONS[report.trigger]
        details = ", ".join(f"{k}: {v}" for k, v in report.per_action_breakdown.items())
        message = (
            f"Audit cleanup ({report.trigger.value.lower()}): {report.total_deleted} records deleted "
            f"in {report.duration_ms:.0f}ms. Details: {details}"
        )

        db = self.session_factory()
        try:
            log_audit_event(
                db=db,
                action=action,
                message=message,
                user_id=actor_id or SYSTEM_USER_ID,
                ip_address=ip_address or SYSTEM_IP_ADDRESS,
            )
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(
                f"Failed to write {action} audit record: {e}",
                exc_info=True,
                extra={"run_id": report.run_id}
            )
        finally:
            db.close()

    @staticmethod
    def _record_run_metrics(report: CleanupReport) -> None:
        if report.is_preview:
            outcome = "preview"
        elif report.cancelled:
            outcome = "cancelled"
        elif report.has_errors:
            outcome = "partial"
        else:
            outcome = "success"

        retention_runs_total.labels(trigger=report.trigger.value.lower(), outcome=outcome).inc()
        retention_run_duration_seconds.labels(trigger=report.trigger.value.lower()).observe(
            report.duration_ms / 1000
        )

    def export_records(
        self,
        request: ExportRequest,
        actor_id: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> Path:
        """Write filtered audit records to an archive file for download.

        The export itself is recorded as an AUDIT_EXPORT audit event.

        Raises:
            ArchiveWriteError: File could not be written
            SQLAlchemyError: Records could not be loaded
        """
        settings = self._settings
        writer = self.archive_writer or ArchiveWriter.from_settings(settings)
        label = f"EXPORT_{request.action_type}" if request.action_type else "EXPORT"

        db = self.session_factory()
        try:
            repo = self.repository_class(db)
            records = repo.fetch_for_export(
                start_date=request.start_date,
                end_date=request.end_date,
                action_type=request.action_type,
                user_id=request.user_id,
                limit=request.max_records,
            )

            path = writer.write_archive(
                label,
                records,
                cutoff_date=request.end_date or self.clock(),
                archive_format=request.format,
                compress=request.compress,
            )

            log_audit_event(
                db=db,
                action=AuditActions.AUDIT_EXPORT,
                message=f"Exported {len(records)} audit records to {path.name}",
                user_id=actor_id or SYSTEM_USER_ID,
                ip_address=ip_address or SYSTEM_IP_ADDRESS,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        logger.info(
            f"Exported {len(records)} audit records to {path.name}",
            extra={"archive_path": str(path), "user_id": actor_id}
        )
        return path


def create_cleanup_engine(settings: Optional[RetentionSettings] = None) -> CleanupEngine:
    """Build an engine on the application database and the process-wide guard.

    Used by the API lifespan and by Celery workers.
    """
    from ..config import get_settings
    from ..database import get_session_factory
    from .concurrency import get_process_guard

    settings = settings or get_settings().retention_settings()
    return CleanupEngine(
        session_factory=get_session_factory(),
        settings=settings,
        guard=get_process_guard(settings.max_concurrent_cleanup_tasks),
    )
