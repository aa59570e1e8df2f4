"""Pydantic schemas for retention settings, cleanup reports and archives.

This module defines retention-related schemas:
- RetentionSettings: Typed retention configuration snapshot
- CleanupOptions / CleanupReport / PolicyResult: Cleanup engine contract
- ArchiveManifest and friends: Archive file content
- Request/response models for the admin control surface
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from pydantic.alias_generators import to_camel


class ArchiveFormat(str, Enum):
    """Serialization format of archive files."""
    JSON = "JSON"
    CSV = "CSV"

    @property
    def extension(self) -> str:
        return self.value.lower()


class CleanupTrigger(str, Enum):
    """What started a cleanup run. Determines the meta-audit action name."""
    SCHEDULED = "SCHEDULED"
    FORCED = "FORCED"
    MANUAL = "MANUAL"


class RetentionSettings(BaseModel):
    """Retention engine configuration.

    Immutable once built: the engine takes one snapshot per run, so a
    configuration change only takes effect on the next run.

    Retention periods are in days and must be positive. An empty
    retention_policies map means the built-in policy table is used.
    """

    model_config = ConfigDict(frozen=True)

    retention_policies: Dict[str, int] = Field(
        default_factory=dict,
        description="Action type -> retention days, plus an optional DEFAULT entry"
    )

    cleanup_enabled: bool = Field(
        default=True,
        description="Run the background cleanup loop"
    )

    cleanup_interval_hours: int = Field(
        default=24,
        ge=1,
        le=24 * 365,
        description="Hours between scheduled cleanup runs"
    )

    archive_before_delete: bool = Field(
        default=False,
        description="Archive expiring records before deleting them"
    )

    archive_path: str = Field(
        default="archives/audit",
        min_length=1,
        description="Directory holding archive files"
    )

    archive_format: ArchiveFormat = Field(
        default=ArchiveFormat.JSON,
        description="Archive serialization format (JSON or CSV)"
    )

    compress_archives: bool = Field(
        default=False,
        description="Gzip archive files"
    )

    batch_size: int = Field(
        default=1000,
        ge=1,
        le=100_000,
        description="Maximum records deleted per transaction"
    )

    max_concurrent_cleanup_tasks: int = Field(
        default=1,
        ge=1,
        le=16,
        description="Maximum simultaneous cleanup runs"
    )

    alert_on_large_cleanup: bool = Field(
        default=True,
        description="Flag runs deleting more than large_cleanup_threshold records"
    )

    large_cleanup_threshold: int = Field(
        default=10_000,
        ge=0,
        description="Deleted-record count above which a run is flagged"
    )

    archive_retention_days: int = Field(
        default=365,
        ge=1,
        le=3650,
        description="Age after which archive files are purged"
    )

    auto_cleanup_archives: bool = Field(
        default=False,
        description="Purge old archives after each scheduled run"
    )

    max_archive_size_mb: int = Field(
        default=100,
        ge=1,
        description="Archive files larger than this are logged as a warning"
    )

    @field_validator("retention_policies")
    @classmethod
    def validate_positive_days(cls, v: Dict[str, int]) -> Dict[str, int]:
        """Ensure every retention period is a positive number of days."""
        for action_type, days in v.items():
            if not action_type or not action_type.strip():
                raise ValueError("Retention policy action type must not be empty")
            if days < 1:
                raise ValueError(
                    f"Retention period for {action_type} must be at least 1 day"
                )
        return v

    @field_validator("archive_format", mode="before")
    @classmethod
    def normalize_format(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v


class CleanupOptions(BaseModel):
    """Options for a single cleanup run.

    action_type None or "all" processes every configured policy.
    archive_before_delete None falls back to the configured default.
    """

    action_type: Optional[str] = Field(
        default=None,
        max_length=100,
        description="Single action type to process, or 'all'"
    )

    retention_days_override: Optional[int] = Field(
        default=None,
        ge=1,
        le=3650,
        description="Retention days to use instead of the configured policy"
    )

    archive_before_delete: Optional[bool] = Field(
        default=None,
        description="Archive before deleting (None = configured default)"
    )

    preview_only: bool = Field(
        default=False,
        description="Count matching records without mutating anything"
    )

    @property
    def targets_all(self) -> bool:
        action_type = (self.action_type or "").strip()
        return not action_type or action_type.lower() == "all"


class PolicyError(BaseModel):
    """Error folded into a policy result."""
    type: str
    message: str


class PolicyResult(BaseModel):
    """Outcome of processing one (action type, retention days) pair."""

    action_type: str
    retention_days: int
    cutoff_date: datetime
    matched_count: int = Field(default=0, ge=0)
    deleted_count: int = Field(default=0, ge=0)
    archived: bool = False
    archive_path: Optional[str] = None
    cancelled: bool = False
    error: Optional[PolicyError] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and not self.cancelled


class CleanupReport(BaseModel):
    """Result of one cleanup engine execution.

    Never persisted directly; a meta-audit record summarizes it.
    """

    run_id: str
    trigger: CleanupTrigger
    started_at: datetime
    completed_at: Optional[datetime] = None
    is_preview: bool = False
    policies: List[PolicyResult] = Field(default_factory=list)
    alert: bool = False
    cancelled: bool = False

    @property
    def total_matched(self) -> int:
        return sum(p.matched_count for p in self.policies)

    @property
    def total_deleted(self) -> int:
        return sum(p.deleted_count for p in self.policies)

    @property
    def duration_ms(self) -> float:
        if self.completed_at is None:
            return 0.0
        return (self.completed_at - self.started_at).total_seconds() * 1000

    @property
    def has_errors(self) -> bool:
        return any(p.error is not None for p in self.policies)

    @property
    def per_action_breakdown(self) -> Dict[str, int]:
        """Matched counts for a preview, deleted counts otherwise (non-zero only)."""
        breakdown = {}
        for p in self.policies:
            count = p.matched_count if self.is_preview else p.deleted_count
            if count:
                breakdown[p.action_type] = count
        return breakdown

    @property
    def archive_paths(self) -> List[str]:
        return [p.archive_path for p in self.policies if p.archive_path]

    def result_for(self, action_type: str) -> Optional[PolicyResult]:
        for p in self.policies:
            if p.action_type == action_type:
                return p
        return None


# =============================================================================
# ARCHIVE CONTENT
# =============================================================================

class _CamelModel(BaseModel):
    """Archive payloads use camelCase field names on disk."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ArchiveDateRange(_CamelModel):
    start_date: datetime
    end_date: datetime


class ArchiveStatistics(_CamelModel):
    total_logs: int = 0
    unique_users: int = 0
    unique_actions: int = 0
    top_actions: Dict[str, int] = Field(default_factory=dict)


class ArchiveManifest(_CamelModel):
    """Header describing the records stored in one archive file."""
    action_type: str
    cutoff_date: datetime
    archive_date: datetime
    log_count: int
    date_range: Optional[ArchiveDateRange] = None
    statistics: ArchiveStatistics = Field(default_factory=ArchiveStatistics)


class ArchivedAuditRecord(_CamelModel):
    id: int
    user_id: Optional[str] = None
    action: str
    message: str = ""
    created_at: datetime
    ip_address: Optional[str] = None


class ArchiveDocument(_CamelModel):
    """Full JSON archive body: manifest first, then the records."""
    manifest: ArchiveManifest
    logs: List[ArchivedAuditRecord] = Field(default_factory=list)


class ArchiveFileInfo(BaseModel):
    """Archive file as seen by the lifecycle manager."""

    file_name: str
    size_bytes: int
    modified_at: datetime
    is_compressed: bool
    format: Optional[ArchiveFormat] = None
    action_type: Optional[str] = None
    archive_timestamp: Optional[datetime] = None
    log_count: Optional[int] = None

    @computed_field
    @property
    def size_formatted(self) -> str:
        units = ["B", "KB", "MB", "GB"]
        size = float(self.size_bytes)
        order = 0
        while size >= 1024 and order < len(units) - 1:
            order += 1
            size /= 1024
        return f"{size:.2f}".rstrip("0").rstrip(".") + f" {units[order]}"


# =============================================================================
# CONTROL SURFACE
# =============================================================================

class CleanupRequest(BaseModel):
    """Manual cleanup request (POST /audit/cleanup)."""

    retention_days: Optional[int] = Field(
        None,
        ge=1,
        le=3650,
        description="Override retention days (1-3650); omit to use policies"
    )

    action_type: Optional[str] = Field(
        None,
        max_length=100,
        description="Single action type to clean; omit or 'all' for every policy"
    )

    archive_before_delete: Optional[bool] = Field(
        None,
        description="Archive before deleting; omit to use the configured default"
    )

    preview_only: bool = Field(
        False,
        description="Only count matching records"
    )

    def to_options(self) -> CleanupOptions:
        return CleanupOptions(
            action_type=self.action_type,
            retention_days_override=self.retention_days,
            archive_before_delete=self.archive_before_delete,
            preview_only=self.preview_only,
        )


class CleanupResponse(BaseModel):
    """Result of a manual or forced cleanup."""

    message: str
    run_id: str
    deleted_count: int
    matched_count: int
    cutoff_date: Optional[datetime] = Field(
        None,
        description="Cutoff used when a single policy was processed"
    )
    per_action_breakdown: Dict[str, int] = Field(default_factory=dict)
    policies: List[PolicyResult] = Field(default_factory=list)
    archive_paths: List[str] = Field(default_factory=list)
    duration_ms: float
    is_preview: bool
    has_errors: bool = False
    alert: bool = False

    @classmethod
    def from_report(cls, report: CleanupReport) -> "CleanupResponse":
        if report.is_preview:
            message = f"Preview: {report.total_matched} records would be deleted"
        elif report.total_deleted == 0:
            message = "No records matched the retention criteria"
        else:
            message = f"Cleanup completed: {report.total_deleted} records deleted"
        if report.has_errors:
            failed = [p.action_type for p in report.policies if p.error]
            message += f" (errors for: {', '.join(failed)})"

        cutoff = report.policies[0].cutoff_date if len(report.policies) == 1 else None

        return cls(
            message=message,
            run_id=report.run_id,
            deleted_count=report.total_deleted,
            matched_count=report.total_matched,
            cutoff_date=cutoff,
            per_action_breakdown=report.per_action_breakdown,
            policies=report.policies,
            archive_paths=report.archive_paths,
            duration_ms=round(report.duration_ms, 2),
            is_preview=report.is_preview,
            has_errors=report.has_errors,
            alert=report.alert,
        )


class RetentionConfigResponse(BaseModel):
    """Active retention configuration (GET /audit/retention-config)."""

    settings: RetentionSettings
    effective_policies: Dict[str, int]
    default_retention_days: int
    using_builtin_policies: bool


class ActionStatistic(BaseModel):
    action: str
    count: int
    percentage: float
    first_occurrence: Optional[datetime] = None
    last_occurrence: Optional[datetime] = None


class MonthlyStatistic(BaseModel):
    year_month: str = Field(description="YYYY-MM")
    count: int
    top_actions_this_month: List[str] = Field(default_factory=list)


class DatabaseSizeEstimate(BaseModel):
    estimated_size_kb: int = 0
    average_size_per_log: float = 0.0
    daily_growth_kb: float = 0.0
    predicted_30_days_kb: float = 0.0


class AuditDatabaseStats(BaseModel):
    """Audit table statistics (GET /audit/database-size)."""

    total_logs: int
    logs_last_7_days: int
    logs_last_30_days: int
    oldest_log: Optional[datetime] = None
    newest_log: Optional[datetime] = None
    top_actions: List[ActionStatistic] = Field(default_factory=list)
    monthly_distribution: List[MonthlyStatistic] = Field(default_factory=list)
    size_estimate: DatabaseSizeEstimate = Field(default_factory=DatabaseSizeEstimate)


class QuickStats(BaseModel):
    """Dashboard counters (GET /audit/stats)."""

    total_logs: int
    logs_today: int
    logs_last_7_days: int
    login_attempts: int
    book_actions: int
    security_events: int


class ArchiveListResponse(BaseModel):
    archives: List[ArchiveFileInfo]
    total_count: int
    total_size_bytes: int


class ArchivePurgeResponse(BaseModel):
    message: str
    deleted_count: int
    max_age_days: int


class ExportRequest(BaseModel):
    """Ad-hoc export of audit records (POST /audit/export)."""

    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    action_type: Optional[str] = Field(None, max_length=100)
    user_id: Optional[str] = Field(None, max_length=450)
    format: ArchiveFormat = ArchiveFormat.CSV
    compress: bool = False
    max_records: int = Field(5000, ge=1, le=10_000)

    @field_validator("format", mode="before")
    @classmethod
    def normalize_format(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v


class SchedulerStatus(BaseModel):
    """Background cleanup loop status (GET /audit/scheduler)."""

    state: str
    enabled: bool
    interval_hours: int
    last_run_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None
    last_run_id: Optional[str] = None
    last_run_deleted: Optional[int] = None
    last_run_had_errors: Optional[bool] = None
    runs_completed: int = 0
    runs_skipped: int = 0
    active_runs: int = 0
