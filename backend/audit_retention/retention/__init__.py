"""Audit log retention and archival.

This module provides:
- Per-action-type retention policies with a DEFAULT catch-all
- Batched cleanup of expired audit records with optional archive-before-delete
- A background cleanup loop and Celery entry points
- Archive file listing, download and purging
- Admin APIs for previews, forced runs and statistics
"""

from .schemas import (
    ArchiveFormat,
    CleanupOptions,
    CleanupReport,
    CleanupTrigger,
    PolicyResult,
    RetentionSettings,
)

# Engine, scheduler and router are imported lazily to avoid circular dependencies
# Use: from audit_retention.retention.service import CleanupEngine
# Use: from audit_retention.retention.scheduler import CleanupScheduler

__all__ = [
    "ArchiveFormat",
    "CleanupOptions",
    "CleanupReport",
    "CleanupTrigger",
    "PolicyResult",
    "RetentionSettings",
]
