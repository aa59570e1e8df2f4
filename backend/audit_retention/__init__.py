"""Audit log retention and archival engine.

Bounds the growth of the append-only audit_log table by applying
per-action-type retention policies, optionally archiving expiring records
before deletion, running on a schedule, and exposing admin controls.
"""

__version__ = "0.1.0"
