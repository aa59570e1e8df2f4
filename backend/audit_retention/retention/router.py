"""FastAPI router for audit retention management endpoints.

Provides admin APIs for:
- Previewing and triggering cleanup (single action type or all policies)
- Forcing the scheduled cleanup immediately
- Viewing the active retention configuration
- Audit table statistics
- Listing, downloading and purging archive files
- Ad-hoc export of filtered audit records

All endpoints require ADMIN role.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from ..auth.dependencies import CurrentUser, get_current_admin
from ..database import get_db
from .lifecycle import ArchiveLifecycleManager
from .policy import RetentionPolicy
from .scheduler import CleanupScheduler
from .schemas import (
    ArchiveListResponse,
    ArchivePurgeResponse,
    AuditDatabaseStats,
    CleanupOptions,
    CleanupRequest,
    CleanupResponse,
    CleanupTrigger,
    ExportRequest,
    QuickStats,
    RetentionConfigResponse,
    SchedulerStatus,
)
from .service import CleanupEngine
from .statistics import collect_database_stats, collect_quick_stats

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/audit", tags=["audit-retention"])


def get_cleanup_engine(request: Request) -> CleanupEngine:
    return request.app.state.cleanup_engine


def get_scheduler(request: Request) -> CleanupScheduler:
    return request.app.state.cleanup_scheduler


def get_lifecycle_manager(request: Request) -> ArchiveLifecycleManager:
    return request.app.state.archive_lifecycle


def _client_ip(request: Request) -> Optional[str]:
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else None


@router.post("/cleanup", response_model=CleanupResponse)
def trigger_cleanup(
    body: CleanupRequest,
    request: Request,
    admin: CurrentUser = Depends(get_current_admin),
    engine: CleanupEngine = Depends(get_cleanup_engine),
) -> CleanupResponse:
    """Run (or preview) a cleanup.

    Requires ADMIN role. Omitting action_type (or passing "all") processes every
    policy; retention_days overrides the configured period for every processed
    action type.

    Returns:
        CleanupResponse with matched/deleted counts and per-policy results

    Raises:
        HTTPException 429: Another cleanup run is in progress
        HTTPException 422: Validation error (e.g. retention_days out of 1-3650)
    """
    report = engine.run_cleanup(
        body.to_options(),
        trigger=CleanupTrigger.MANUAL,
        actor_id=admin.id,
        ip_address=_client_ip(request),
    )

    logger.info(
        f"Manual audit cleanup by {admin.id}: {report.total_deleted} deleted",
        extra={"user_id": admin.id, "run_id": report.run_id, "preview": report.is_preview}
    )

    return CleanupResponse.from_report(report)


@router.post("/force-cleanup", response_model=CleanupResponse)
def force_cleanup(
    request: Request,
    admin: CurrentUser = Depends(get_current_admin),
    engine: CleanupEngine = Depends(get_cleanup_engine),
) -> CleanupResponse:
    """Run the scheduled cleanup now, with the configured policies and archiving.

    Raises:
        HTTPException 429: Another cleanup run is in progress
    """
    logger.info(f"Forced audit cleanup requested by {admin.id}", extra={"user_id": admin.id})

    report = engine.run_cleanup(
        CleanupOptions(),
        trigger=CleanupTrigger.FORCED,
        actor_id=admin.id,
        ip_address=_client_ip(request),
    )
    return CleanupResponse.from_report(report)


@router.get("/retention-config", response_model=RetentionConfigResponse)
def get_retention_config(
    admin: CurrentUser = Depends(get_current_admin),
    engine: CleanupEngine = Depends(get_cleanup_engine),
) -> RetentionConfigResponse:
    """Active retention configuration and the effective policy table."""
    policy: RetentionPolicy = engine.current_policy()
    return RetentionConfigResponse(
        settings=engine.settings,
        effective_policies=policy.as_dict(),
        default_retention_days=policy.default_days,
        using_builtin_policies=policy.is_builtin,
    )


@router.get("/database-size", response_model=AuditDatabaseStats)
def get_database_size(
    admin: CurrentUser = Depends(get_current_admin),
    db: Session = Depends(get_db),
) -> AuditDatabaseStats:
    """Audit table statistics: counts, distribution and size estimate."""
    return collect_database_stats(db)


@router.get("/stats", response_model=QuickStats)
def get_quick_stats(
    admin: CurrentUser = Depends(get_current_admin),
    db: Session = Depends(get_db),
) -> QuickStats:
    """Dashboard counters."""
    return collect_quick_stats(db)


@router.get("/archives", response_model=ArchiveListResponse)
def list_archives(
    admin: CurrentUser = Depends(get_current_admin),
    lifecycle: ArchiveLifecycleManager = Depends(get_lifecycle_manager),
) -> ArchiveListResponse:
    """Archive files, newest first."""
    archives = lifecycle.list_archives()
    return ArchiveListResponse(
        archives=archives,
        total_count=len(archives),
        total_size_bytes=lifecycle.total_size_bytes(archives),
    )


@router.get("/archives/download/{file_name}")
def download_archive(
    file_name: str,
    admin: CurrentUser = Depends(get_current_admin),
    lifecycle: ArchiveLifecycleManager = Depends(get_lifecycle_manager),
) -> FileResponse:
    """Download one archive file.

    Raises:
        HTTPException 400: File name does not match the archive naming pattern
        HTTPException 404: Archive does not exist
    """
    path = lifecycle.resolve_download(file_name)

    logger.info(f"Archive {path.name} downloaded by {admin.id}", extra={"user_id": admin.id})

    media_type = "application/gzip" if path.name.endswith(".gz") else (
        "text/csv" if path.name.endswith(".csv") else "application/json"
    )
    return FileResponse(path, media_type=media_type, filename=path.name)


@router.delete("/archives/cleanup", response_model=ArchivePurgeResponse)
def purge_archives(
    max_age_days: int = Query(365, ge=1, le=3650),
    admin: CurrentUser = Depends(get_current_admin),
    lifecycle: ArchiveLifecycleManager = Depends(get_lifecycle_manager),
) -> ArchivePurgeResponse:
    """Delete archive files older than max_age_days (by file modification time)."""
    deleted = lifecycle.purge_older_than(max_age_days)

    logger.info(
        f"Archive purge by {admin.id}: {deleted} file(s) older than {max_age_days} days",
        extra={"user_id": admin.id, "deleted_count": deleted}
    )

    return ArchivePurgeResponse(
        message=f"{deleted} archive file(s) deleted",
        deleted_count=deleted,
        max_age_days=max_age_days,
    )


@router.post("/export")
def export_audit_logs(
    body: ExportRequest,
    request: Request,
    admin: CurrentUser = Depends(get_current_admin),
    engine: CleanupEngine = Depends(get_cleanup_engine),
) -> FileResponse:
    """Export filtered audit records as a JSON or CSV file.

    The file is also kept in the archive directory. Limited to 10,000 records.
    """
    path = engine.export_records(body, actor_id=admin.id, ip_address=_client_ip(request))

    media_type = "application/gzip" if body.compress else (
        "text/csv" if path.name.endswith(".csv") else "application/json"
    )
    return FileResponse(path, media_type=media_type, filename=path.name)


@router.get("/scheduler", response_model=SchedulerStatus)
def get_scheduler_status(
    admin: CurrentUser = Depends(get_current_admin),
    scheduler: CleanupScheduler = Depends(get_scheduler),
) -> SchedulerStatus:
    """Background cleanup loop status."""
    return scheduler.status()


@router.post("/scheduler/trigger", response_model=SchedulerStatus, status_code=202)
def trigger_scheduler(
    admin: CurrentUser = Depends(get_current_admin),
    scheduler: CleanupScheduler = Depends(get_scheduler),
) -> SchedulerStatus:
    """Queue an immediate run of the background loop and return at once.

    Raises:
        HTTPException 409: Background cleanup is disabled or stopped
    """
    if not scheduler.is_running:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Background audit cleanup is not running"
        )

    scheduler.trigger()
    logger.info(f"Background audit cleanup queued by {admin.id}", extra={"user_id": admin.id})

    return scheduler.status()
