"""Observability module for the audit retention service.

Provides structured logging, metrics, and health checks.
"""

from .logging_config import configure_logging, get_logger
from .metrics import (
    retention_runs_total,
    retention_run_duration_seconds,
    retention_records_matched_total,
    retention_records_deleted_total,
    retention_policy_errors_total,
    retention_archives_written_total,
    retention_archive_bytes,
    retention_archives_purged_total,
    retention_guard_rejections_total,
    retention_active_runs,
    retention_large_cleanup_alerts_total,
)
from .request_id import request_id_var, get_request_id, set_request_id, generate_request_id
from .health import HealthStatus, ComponentHealth
from .middleware import RequestIDMiddleware

__all__ = [
    # Logging
    "configure_logging",
    "get_logger",
    # Metrics
    "retention_runs_total",
    "retention_run_duration_seconds",
    "retention_records_matched_total",
    "retention_records_deleted_total",
    "retention_policy_errors_total",
    "retention_archives_written_total",
    "retention_archive_bytes",
    "retention_archives_purged_total",
    "retention_guard_rejections_total",
    "retention_active_runs",
    "retention_large_cleanup_alerts_total",
    # Request ID
    "request_id_var",
    "get_request_id",
    "set_request_id",
    "generate_request_id",
    # Health
    "HealthStatus",
    "ComponentHealth",
    # Middleware
    "RequestIDMiddleware",
]
