"""Audit logging service.

This service provides a centralized interface for creating audit log
entries. All trackable application events must be logged through it.

Audit Events:
- LOGIN_SUCCESS, LOGIN_FAILED, LOGOUT, REGISTER
- BOOK_CREATED, BOOK_VIEWED, BOOK_DOWNLOADED, ...
- FAVORITE_ADDED, FAVORITE_REMOVED
- UNAUTHORIZED_ACCESS, RATE_LIMIT_EXCEEDED, SYSTEM_ERROR
- AUDIT_CLEANUP, FORCED_AUTO_CLEANUP, MANUAL_AUDIT_CLEANUP, AUDIT_EXPORT
"""

from typing import Optional

from fastapi import Request
from sqlalchemy import update
from sqlalchemy.orm import Session

from ..models.audit_log import AuditLog
from ..models.base import utcnow


class AuditActions:
    """Canonical action names, shared by producers and retention policies."""

    # User
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILED = "LOGIN_FAILED"
    LOGOUT = "LOGOUT"
    REGISTER = "REGISTER"
    PASSWORD_CHANGED = "PASSWORD_CHANGED"
    PROFILE_UPDATED = "PROFILE_UPDATED"

    # Books and magazines
    BOOK_CREATED = "BOOK_CREATED"
    BOOK_UPDATED = "BOOK_UPDATED"
    BOOK_DELETED = "BOOK_DELETED"
    BOOK_DOWNLOADED = "BOOK_DOWNLOADED"
    BOOK_VIEWED = "BOOK_VIEWED"
    BOOK_RATED = "BOOK_RATED"
    BOOK_COMMENTED = "BOOK_COMMENTED"

    # Favorites
    FAVORITE_ADDED = "FAVORITE_ADDED"
    FAVORITE_REMOVED = "FAVORITE_REMOVED"

    # Administration
    USER_ROLE_CHANGED = "USER_ROLE_CHANGED"
    USER_DELETED = "USER_DELETED"
    NOTIFICATION_SENT = "NOTIFICATION_SENT"

    # Security
    UNAUTHORIZED_ACCESS = "UNAUTHORIZED_ACCESS"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"

    # System
    SYSTEM_ERROR = "SYSTEM_ERROR"
    SYSTEM_STARTUP = "SYSTEM_STARTUP"
    SYSTEM_SHUTDOWN = "SYSTEM_SHUTDOWN"

    # Retention engine (meta-audit)
    AUDIT_CLEANUP = "AUDIT_CLEANUP"
    FORCED_AUTO_CLEANUP = "FORCED_AUTO_CLEANUP"
    MANUAL_AUDIT_CLEANUP = "MANUAL_AUDIT_CLEANUP"
    AUDIT_EXPORT = "AUDIT_EXPORT"


SYSTEM_USER_ID = "SYSTEM"
SYSTEM_IP_ADDRESS = "127.0.0.1"


def log_audit_event(
    db: Session,
    action: str,
    message: str,
    user_id: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> AuditLog:
    """Create an audit log entry.

    All parameters are stored as-is, except that the message is truncated to
    the column width. This function does not validate action names.

    Args:
        db: Database session
        action: Event action (e.g., "BOOK_VIEWED", "LOGIN_SUCCESS")
        message: Human-readable description of the event
        user_id: User who performed the action (None for anonymous events)
        ip_address: Client IP address (IPv4 or IPv6)

    Returns:
        AuditLog: The created audit log entry

    Example:
        log_audit_event(
            db=db,
            action=AuditActions.BOOK_DOWNLOADED,
            message="Downloaded 'Dune' (id=42)",
            user_id=current_user_id,
            ip_address="192.168.1.100",
        )
    """
    audit_entry = AuditLog(
        user_id=user_id,
        action=action,
        message=message[:500],
        created_at=utcnow(),
        ip_address=ip_address,
    )

    db.add(audit_entry)
    db.flush()  # Get ID without committing transaction

    return audit_entry


def log_from_request(
    db: Session,
    request: Request,
    action: str,
    message: str,
    user_id: Optional[str] = None,
) -> AuditLog:
    """Create audit log entry extracting the client IP from a FastAPI request.

    Convenience wrapper around log_audit_event.
    """
    # Use first IP in X-Forwarded-For chain (original client)
    ip_address = request.client.host if request.client else None
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        ip_address = forwarded_for.split(",")[0].strip()

    return log_audit_event(
        db=db,
        action=action,
        message=message,
        user_id=user_id,
        ip_address=ip_address,
    )


def anonymize_user_records(db: Session, user_id: str) -> int:
    """Strip personal identifiers from every audit record of a user.

    This is the only mutation allowed on existing audit records. It is
    used to honor erasure requests without losing the event history.

    Args:
        db: Database session
        user_id: Identifier of the user requesting erasure

    Returns:
        Number of records anonymized
    """
    result = db.execute(
        update(AuditLog)
        .where(AuditLog.user_id == user_id)
        .values(user_id=None, ip_address=None)
    )
    db.flush()
    return result.rowcount or 0
