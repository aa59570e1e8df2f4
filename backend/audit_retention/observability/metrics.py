"""Prometheus metrics for the audit retention engine.

Defines and exposes operational metrics for monitoring and alerting.
"""

from prometheus_client import Counter, Histogram, Gauge

# Cleanup run metrics
retention_runs_total = Counter(
    "audit_retention_runs_total",
    "Total cleanup runs",
    ["trigger", "outcome"]  # trigger: scheduled|forced|manual, outcome: success|partial|cancelled|preview
)

retention_run_duration_seconds = Histogram(
    "audit_retention_run_duration_seconds",
    "Cleanup run duration in seconds",
    ["trigger"],
    buckets=[0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0, 900.0, 3600.0]
)

# Per-policy metrics
retention_records_matched_total = Counter(
    "audit_retention_records_matched_total",
    "Expired audit records found per action type",
    ["action_type"]
)

retention_records_deleted_total = Counter(
    "audit_retention_records_deleted_total",
    "Audit records deleted per action type",
    ["action_type"]
)

retention_policy_errors_total = Counter(
    "audit_retention_policy_errors_total",
    "Policy failures folded into cleanup reports",
    ["error_type"]  # StorageError|ArchiveWriteError|InternalError
)

# Archive metrics
retention_archives_written_total = Counter(
    "audit_retention_archives_written_total",
    "Archive files written",
    ["format", "compressed"]
)

retention_archive_bytes = Histogram(
    "audit_retention_archive_bytes",
    "Size of written archive files in bytes",
    buckets=[1024, 10 * 1024, 100 * 1024, 1024 ** 2, 10 * 1024 ** 2, 100 * 1024 ** 2, 1024 ** 3]
)

retention_archives_purged_total = Counter(
    "audit_retention_archives_purged_total",
    "Archive files deleted by the lifecycle manager",
    ["reason"]  # age
)

# Guard and alerting
retention_guard_rejections_total = Counter(
    "audit_retention_guard_rejections_total",
    "Cleanup runs rejected because the concurrency limit was reached",
    ["trigger"]
)

retention_active_runs = Gauge(
    "audit_retention_active_runs",
    "Cleanup runs currently holding a guard permit"
)

retention_large_cleanup_alerts_total = Counter(
    "audit_retention_large_cleanup_alerts_total",
    "Runs that deleted more records than the large-cleanup threshold"
)
