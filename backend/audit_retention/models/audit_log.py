"""AuditLog SQLAlchemy model"""

from sqlalchemy import Column, Integer, String, Index

from .base import Base, UTCDateTime, utcnow


class AuditLog(Base):
    """AuditLog model for append-only application event logging.

    Rows are written by every part of the application that performs a
    trackable action and are only read or deleted by the retention engine.
    The only permitted mutation is anonymization on an erasure request.
    """
    __tablename__ = "audit_log"
    __table_args__ = (
        Index("ix_audit_log_action_created_at", "action", "created_at"),
        Index("ix_audit_log_created_at", "created_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(450), nullable=True)
    action = Column(String(100), nullable=False)
    message = Column(String(500), nullable=False, default="")
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    ip_address = Column(String(45), nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog id={self.id} action={self.action} created_at={self.created_at}>"

    def to_dict(self):
        """Convert audit log entry to dictionary representation"""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "action": self.action,
            "message": self.message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "ip_address": self.ip_address,
        }
