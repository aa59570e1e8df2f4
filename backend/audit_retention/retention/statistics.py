"""Audit table statistics for the admin dashboard.

Counts, per-action distribution, monthly distribution and a rough size
estimate. All grouping is done in SQL; only the per-month top-N ranking is
finished in Python.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import extract, func, or_, select
from sqlalchemy.orm import Session

from ..models.audit_log import AuditLog
from ..models.base import utcnow
from .schemas import (
    ActionStatistic,
    AuditDatabaseStats,
    DatabaseSizeEstimate,
    MonthlyStatistic,
    QuickStats,
)

logger = logging.getLogger(__name__)

TOP_ACTIONS_LIMIT = 10
TOP_ACTIONS_PER_MONTH = 3
MONTHLY_WINDOW_MONTHS = 6

# Fixed per-row overhead (id, timestamps, ip, user id) on top of the message
ROW_OVERHEAD_BYTES = 70

SECURITY_ACTION_MARKERS = ("UNAUTHORIZED", "RATE_LIMIT", "SYSTEM_ERROR")


def _count(db: Session, *criteria) -> int:
    query = select(func.count(AuditLog.id))
    if criteria:
        query = query.where(*criteria)
    return db.execute(query).scalar_one()


def _months_ago(now: datetime, months: int) -> datetime:
    """First day of the month `months` months before now's month."""
    year, month = now.year, now.month - months
    while month < 1:
        month += 12
        year -= 1
    return now.replace(year=year, month=month, day=1, hour=0, minute=0, second=0, microsecond=0)


def collect_top_actions(db: Session, total_logs: int) -> List[ActionStatistic]:
    count_col = func.count(AuditLog.id).label("count")
    rows = db.execute(
        select(
            AuditLog.action,
            count_col,
            func.min(AuditLog.created_at),
            func.max(AuditLog.created_at),
        )
        .group_by(AuditLog.action)
        .order_by(count_col.desc(), AuditLog.action)
        .limit(TOP_ACTIONS_LIMIT)
    ).all()

    return [
        ActionStatistic(
            action=action or "UNKNOWN",
            count=count,
            percentage=round(count / total_logs * 100, 2) if total_logs else 0.0,
            first_occurrence=first,
            last_occurrence=last,
        )
        for action, count, first, last in rows
    ]


def collect_monthly_distribution(db: Session, now: datetime) -> List[MonthlyStatistic]:
    since = _months_ago(now, MONTHLY_WINDOW_MONTHS)
    year_col = extract("year", AuditLog.created_at).label("year")
    month_col = extract("month", AuditLog.created_at).label("month")

    rows = db.execute(
        select(year_col, month_col, AuditLog.action, func.count(AuditLog.id))
        .where(AuditLog.created_at >= since)
        .group_by(year_col, month_col, AuditLog.action)
    ).all()

    per_month: Dict[str, Dict[str, int]] = defaultdict(dict)
    for year, month, action, count in rows:
        key = f"{int(year):04d}-{int(month):02d}"
        per_month[key][action or "UNKNOWN"] = count

    distribution = []
    for year_month in sorted(per_month):
        actions = per_month[year_month]
        ranked = sorted(actions.items(), key=lambda item: (-item[1], item[0]))
        distribution.append(MonthlyStatistic(
            year_month=year_month,
            count=sum(actions.values()),
            top_actions_this_month=[a for a, _ in ranked[:TOP_ACTIONS_PER_MONTH]],
        ))
    return distribution


def estimate_size(db: Session, total_logs: int, logs_last_7_days: int) -> DatabaseSizeEstimate:
    if total_logs == 0:
        return DatabaseSizeEstimate()

    avg_message_length = db.execute(
        select(func.avg(func.length(AuditLog.message)))
    ).scalar() or 0.0

    per_log = ROW_OVERHEAD_BYTES + float(avg_message_length)
    daily_growth_kb = round((logs_last_7_days / 7.0) * per_log / 1024, 2)

    return DatabaseSizeEstimate(
        estimated_size_kb=int(total_logs * per_log / 1024),
        average_size_per_log=round(per_log, 2),
        daily_growth_kb=daily_growth_kb,
        predicted_30_days_kb=round(daily_growth_kb * 30, 2),
    )


def collect_database_stats(db: Session, now: Optional[datetime] = None) -> AuditDatabaseStats:
    """Full statistics report for the audit table.

    Args:
        db: Database session
        now: Reference time (defaults to current UTC time)

    Returns:
        AuditDatabaseStats
    """
    now = now or utcnow()

    total_logs = _count(db)
    logs_last_7_days = _count(db, AuditLog.created_at >= now - timedelta(days=7))
    logs_last_30_days = _count(db, AuditLog.created_at >= now - timedelta(days=30))

    oldest, newest = db.execute(
        select(func.min(AuditLog.created_at), func.max(AuditLog.created_at))
    ).one()

    stats = AuditDatabaseStats(
        total_logs=total_logs,
        logs_last_7_days=logs_last_7_days,
        logs_last_30_days=logs_last_30_days,
        oldest_log=oldest,
        newest_log=newest,
        top_actions=collect_top_actions(db, total_logs),
        monthly_distribution=collect_monthly_distribution(db, now),
        size_estimate=estimate_size(db, total_logs, logs_last_7_days),
    )

    logger.info(
        f"Computed audit statistics for {total_logs} records",
        extra={"total_logs": total_logs}
    )
    return stats


def collect_quick_stats(db: Session, now: Optional[datetime] = None) -> QuickStats:
    """Dashboard counters."""
    now = now or utcnow()
    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)

    return QuickStats(
        total_logs=_count(db),
        logs_today=_count(db, AuditLog.created_at >= start_of_day),
        logs_last_7_days=_count(db, AuditLog.created_at >= now - timedelta(days=7)),
        login_attempts=_count(db, AuditLog.action.contains("LOGIN")),
        book_actions=_count(db, AuditLog.action.contains("BOOK")),
        security_events=_count(
            db, or_(*(AuditLog.action.contains(m) for m in SECURITY_ACTION_MARKERS))
        ),
    )
