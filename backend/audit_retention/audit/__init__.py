"""Audit event recording.

Producers across the application write audit records through this package;
the retention engine uses it for its own meta-audit entries.
"""

from .service import AuditActions, log_audit_event, log_from_request, anonymize_user_records

__all__ = [
    "AuditActions",
    "log_audit_event",
    "log_from_request",
    "anonymize_user_records",
]
