"""Retention engine exceptions.

Inside a cleanup run these are folded into per-policy results; the
scheduler logs them; the control surface maps them to HTTP status codes.
"""

from typing import Optional


class RetentionError(Exception):
    """Base class for retention engine errors."""

    error_type = "RetentionError"


class ConfigurationError(RetentionError):
    """Retention configuration is missing or invalid.

    Logged as a warning; the built-in policy table is used instead.
    """

    error_type = "ConfigurationError"


class StorageError(RetentionError):
    """Audit store query or delete failed."""

    error_type = "StorageError"


class ArchiveWriteError(RetentionError):
    """Archive file could not be written.

    Deletion for the affected action type is skipped so no record is
    removed without its archive.
    """

    error_type = "ArchiveWriteError"

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class ConcurrencyLimitError(RetentionError):
    """Maximum number of concurrent cleanup runs reached. Retryable."""

    error_type = "ConcurrencyLimitError"

    def __init__(self, message: str, retry_after_seconds: int = 60):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class ArchiveValidationError(RetentionError):
    """Archive file name is malformed or escapes the archive directory."""

    error_type = "ArchiveValidationError"


class ArchiveNotFoundError(RetentionError):
    """Requested archive file does not exist."""

    error_type = "ArchiveNotFoundError"
