"""Celery tasks for audit retention.

For deployments that schedule cleanup with Celery beat instead of the
in-process scheduler thread (set AUDIT_CLEANUP_ENABLED=false on the API
processes in that case).

Tasks:
- retention.cleanup: Scheduled-style cleanup of every policy
- retention.purge_archives: Delete archives past the archive retention window

Example Celery Beat schedule configuration:
    from celery.schedules import crontab

    celery_app.conf.beat_schedule = {
        'audit-retention-daily': {
            'task': 'retention.cleanup',
            'schedule': crontab(hour=2, minute=0),
            'options': {'expires': 3600},
        },
        'audit-archive-purge-weekly': {
            'task': 'retention.purge_archives',
            'schedule': crontab(day_of_week=0, hour=3, minute=0),
        },
    }
"""

import logging
from typing import Any, Dict, Optional

from celery import shared_task

from ..config import get_settings
from .errors import ConcurrencyLimitError
from .lifecycle import ArchiveLifecycleManager
from .schemas import CleanupOptions, CleanupTrigger
from .service import create_cleanup_engine

logger = logging.getLogger(__name__)


@shared_task(name="retention.cleanup", bind=True)
def retention_cleanup_task(self, archive_before_delete: Optional[bool] = None) -> Dict[str, Any]:
    """Run cleanup for every configured policy.

    The task is idempotent: running it twice deletes nothing the second time.
    Errors are logged and reported in the result, never raised.

    Args:
        archive_before_delete: Override the configured archiving default

    Returns:
        Dict with status, run_id, total_deleted, per-action breakdown and error flags
    """
    logger.info("Audit retention cleanup task started")

    try:
        settings = get_settings().retention_settings()
        engine = create_cleanup_engine(settings)
        report = engine.run_cleanup(
            CleanupOptions(archive_before_delete=archive_before_delete),
            trigger=CleanupTrigger.SCHEDULED,
        )

        result = {
            'status': 'completed',
            'run_id': report.run_id,
            'started_at': report.started_at.isoformat(),
            'completed_at': report.completed_at.isoformat() if report.completed_at else None,
            'duration_ms': round(report.duration_ms, 2),
            'total_matched': report.total_matched,
            'total_deleted': report.total_deleted,
            'breakdown': report.per_action_breakdown,
            'archive_paths': report.archive_paths,
            'has_errors': report.has_errors,
            'alert': report.alert,
        }

        if settings.auto_cleanup_archives:
            lifecycle = ArchiveLifecycleManager.from_settings(settings)
            result['archives_purged'] = lifecycle.purge_expired(settings)

        logger.info("Audit retention cleanup task completed", extra=result)
        return result

    except ConcurrencyLimitError as e:
        logger.info(f"Audit retention cleanup skipped: {e}")
        return {
            'status': 'skipped',
            'reason': str(e),
            'total_deleted': 0,
        }

    except Exception as e:
        logger.error(
            "Audit retention cleanup task failed",
            exc_info=True,
            extra={"error": str(e)}
        )
        return {
            'status': 'failed',
            'error': str(e),
            'total_deleted': 0,
        }


@shared_task(name="retention.purge_archives", bind=True)
def purge_archives_task(self, max_age_days: Optional[int] = None) -> Dict[str, Any]:
    """Delete archive files older than max_age_days (default: configured window).

    Returns:
        Dict with status and deleted_count
    """
    settings = get_settings().retention_settings()
    max_age_days = max_age_days or settings.archive_retention_days

    try:
        lifecycle = ArchiveLifecycleManager.from_settings(settings)
        deleted = lifecycle.purge_older_than(max_age_days)
    except (OSError, ValueError) as e:
        logger.error(
            "Archive purge task failed",
            exc_info=True,
            extra={"error": str(e)}
        )
        return {
            'status': 'failed',
            'error': str(e),
            'deleted_count': 0,
        }

    logger.info(f"Archive purge task deleted {deleted} file(s)")
    return {
        'status': 'completed',
        'deleted_count': deleted,
        'max_age_days': max_age_days,
    }
