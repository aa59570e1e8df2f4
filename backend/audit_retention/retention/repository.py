"""Audit log repository for retention queries and deletions"""

from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import and_, delete, func, select
from sqlalchemy.orm import Session

from ..models.audit_log import AuditLog
from .policy import DEFAULT_KEY


class AuditLogRepository:
    """Repository for audit_log retention operations.

    Every query filters on created_at < cutoff, so it only ever touches the
    historical slice of the table and never blocks concurrent inserts.

    The DEFAULT action type is the catch-all: it matches every action not
    listed in known_action_types.
    """

    def __init__(self, db: Session):
        """Initialize repository with database session.

        Args:
            db: SQLAlchemy database session
        """
        self.db = db

    def _expired_criteria(
        self,
        action_type: str,
        cutoff: datetime,
        known_action_types: Sequence[str] = ()
    ):
        if action_type == DEFAULT_KEY:
            if known_action_types:
                action_clause = AuditLog.action.notin_(list(known_action_types))
            else:
                return AuditLog.created_at < cutoff
        else:
            action_clause = AuditLog.action == action_type

        return and_(action_clause, AuditLog.created_at < cutoff)

    def count_expired(
        self,
        action_type: str,
        cutoff: datetime,
        known_action_types: Sequence[str] = ()
    ) -> int:
        """Count records of an action type created before cutoff."""
        query = select(func.count(AuditLog.id)).where(
            self._expired_criteria(action_type, cutoff, known_action_types)
        )
        return self.db.execute(query).scalar_one()

    def fetch_expired(
        self,
        action_type: str,
        cutoff: datetime,
        known_action_types: Sequence[str] = ()
    ) -> List[AuditLog]:
        """Load the full expired set, oldest first (archive input)."""
        query = (
            select(AuditLog)
            .where(self._expired_criteria(action_type, cutoff, known_action_types))
            .order_by(AuditLog.created_at, AuditLog.id)
        )
        return list(self.db.execute(query).scalars().all())

    def fetch_expired_ids(
        self,
        action_type: str,
        cutoff: datetime,
        known_action_types: Sequence[str] = (),
        limit: int = 1000
    ) -> List[int]:
        """Next batch of expired record ids, oldest first."""
        query = (
            select(AuditLog.id)
            .where(self._expired_criteria(action_type, cutoff, known_action_types))
            .order_by(AuditLog.created_at, AuditLog.id)
            .limit(limit)
        )
        return list(self.db.execute(query).scalars().all())

    def delete_ids(self, ids: Sequence[int]) -> int:
        """Delete records by id.

        Args:
            ids: Record ids (one batch)

        Returns:
            Number of rows deleted
        """
        if not ids:
            return 0
        result = self.db.execute(
            delete(AuditLog)
            .where(AuditLog.id.in_(list(ids)))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    def fetch_for_export(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        action_type: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: int = 5000
    ) -> List[AuditLog]:
        """Filtered records for an ad-hoc export, oldest first."""
        query = select(AuditLog)

        if start_date is not None:
            query = query.where(AuditLog.created_at >= start_date)
        if end_date is not None:
            query = query.where(AuditLog.created_at <= end_date)
        if action_type:
            query = query.where(AuditLog.action == action_type)
        if user_id:
            query = query.where(AuditLog.user_id == user_id)

        query = query.order_by(AuditLog.created_at, AuditLog.id).limit(limit)

        return list(self.db.execute(query).scalars().all())
