"""Health check utilities.

Provides health and readiness checks for the audit store and the archive
directory.
"""

import os
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .logging_config import get_logger

logger = get_logger(__name__)


class HealthStatus(str, Enum):
    """Health check status enum."""
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DEGRADED = "degraded"


@dataclass
class ComponentHealth:
    """Health status for a single component."""
    status: HealthStatus
    message: Optional[str] = None
    latency_ms: Optional[float] = None


def check_database_health(db: Session) -> ComponentHealth:
    """Check audit store connectivity.

    Args:
        db: Database session

    Returns:
        ComponentHealth: Database health status
    """
    try:
        start = time.time()
        db.execute(text("SELECT 1"))
        latency_ms = (time.time() - start) * 1000

        return ComponentHealth(
            status=HealthStatus.HEALTHY,
            message="Database connection OK",
            latency_ms=round(latency_ms, 2)
        )
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}", exc_info=True)
        return ComponentHealth(
            status=HealthStatus.UNHEALTHY,
            message=f"Database error: {str(e)}"
        )


def check_archive_storage_health(archive_path: str) -> ComponentHealth:
    """Check that the archive directory is writable.

    A missing directory is only DEGRADED: the archive writer creates it on
    first use.
    """
    if not os.path.isdir(archive_path):
        return ComponentHealth(
            status=HealthStatus.DEGRADED,
            message=f"Archive directory {archive_path} does not exist yet"
        )

    if not os.access(archive_path, os.W_OK | os.X_OK):
        logger.error(f"Archive directory {archive_path} is not writable")
        return ComponentHealth(
            status=HealthStatus.UNHEALTHY,
            message=f"Archive directory {archive_path} is not writable"
        )

    return ComponentHealth(
        status=HealthStatus.HEALTHY,
        message="Archive directory writable"
    )


def get_overall_health(components: Dict[str, ComponentHealth]) -> HealthStatus:
    """Determine overall health from component statuses.

    Args:
        components: Dictionary of component health statuses

    Returns:
        HealthStatus: Overall system health
    """
    if all(c.status == HealthStatus.HEALTHY for c in components.values()):
        return HealthStatus.HEALTHY

    if any(c.status == HealthStatus.UNHEALTHY for c in components.values()):
        return HealthStatus.UNHEALTHY

    return HealthStatus.DEGRADED
