"""Retention policy resolution.

A RetentionPolicy is an immutable snapshot of action type -> retention days,
built once per cleanup run so configuration changes only affect later runs.
"""

import logging
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from .errors import ConfigurationError
from .schemas import RetentionSettings

logger = logging.getLogger(__name__)

DEFAULT_KEY = "DEFAULT"

# Used when DEFAULT itself is missing from the configuration
BUILTIN_FALLBACK_DAYS = 180

# Used when no retention policies are configured at all
DEFAULT_POLICIES: Mapping[str, int] = MappingProxyType({
    "LOGIN": 180,
    "LOGOUT": 90,
    "REGISTER": 365,
    "PROFILE_UPDATED": 365,
    "BOOK_CREATED": 730,
    "BOOK_DELETED": 730,
    "BOOK_DOWNLOADED": 90,
    "BOOK_VIEWED": 30,
    "FAVORITE_ADDED": 90,
    "FAVORITE_REMOVED": 90,
    "UNAUTHORIZED_ACCESS": 365,
    "RATE_LIMIT_EXCEEDED": 90,
    "SYSTEM_ERROR": 365,
    DEFAULT_KEY: 180,
})


class RetentionPolicy:
    """Immutable map of action type to retention days.

    Always carries a DEFAULT entry. The DEFAULT pair is the catch-all: it
    covers every action type without an explicit entry.

    Example:
        policy = RetentionPolicy({"BOOK_VIEWED": 30, "DEFAULT": 90})
        policy.resolve("BOOK_VIEWED")    # 30
        policy.resolve("LOGIN_FAILED")   # 90
    """

    def __init__(self, days_by_action: Mapping[str, int], is_builtin: bool = False):
        days = dict(days_by_action)
        for action_type, value in days.items():
            if value < 1:
                raise ValueError(
                    f"Retention period for {action_type} must be at least 1 day"
                )
        days.setdefault(DEFAULT_KEY, BUILTIN_FALLBACK_DAYS)
        self._days = MappingProxyType(days)
        self.is_builtin = is_builtin

    @classmethod
    def from_settings(cls, settings: RetentionSettings) -> "RetentionPolicy":
        """Snapshot the configured policies.

        Falls back to DEFAULT_POLICIES (with a logged ConfigurationError)
        when nothing is configured. Never raises.
        """
        if not settings.retention_policies:
            error = ConfigurationError(
                "No audit retention policies configured, using built-in defaults"
            )
            logger.warning(
                str(error),
                extra={"error_type": error.error_type, "policy_count": len(DEFAULT_POLICIES)}
            )
            return cls(DEFAULT_POLICIES, is_builtin=True)

        return cls(settings.retention_policies)

    @property
    def days_by_action(self) -> Mapping[str, int]:
        return self._days

    @property
    def default_days(self) -> int:
        return self._days[DEFAULT_KEY]

    @property
    def known_action_types(self) -> List[str]:
        """Action types with an explicit entry (DEFAULT excluded)."""
        return [a for a in self._days if a != DEFAULT_KEY]

    def resolve(self, action_type: Optional[str]) -> int:
        """Retention days for an action type.

        Returns the explicit entry if present, else DEFAULT, else the
        built-in fallback. Always positive.
        """
        if action_type and action_type in self._days:
            return self._days[action_type]
        return self._days.get(DEFAULT_KEY, BUILTIN_FALLBACK_DAYS)

    def pairs(self, override_days: Optional[int] = None) -> List[Tuple[str, int]]:
        """(action type, days) pairs to process in one run.

        Explicit entries come first in configuration order; the DEFAULT
        catch-all pair is last. override_days replaces every period.
        """
        result = [
            (action_type, override_days or days)
            for action_type, days in self._days.items()
            if action_type != DEFAULT_KEY
        ]
        result.append((DEFAULT_KEY, override_days or self.default_days))
        return result

    def as_dict(self) -> Dict[str, int]:
        return dict(self._days)

    def __repr__(self) -> str:
        return f"<RetentionPolicy {dict(self._days)}>"
