"""SQLAlchemy Models for the audit store"""

from .base import Base, UTCDateTime, utcnow
from .audit_log import AuditLog

__all__ = [
    "Base",
    "UTCDateTime",
    "utcnow",
    "AuditLog",
]
