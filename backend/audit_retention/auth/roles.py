"""User roles and permission hierarchy.

Role Hierarchy (descending permissions):
- ADMIN: Retention configuration, cleanup runs, archive management
- MODERATOR: Content moderation in the library application
- USER: Regular library member
"""

from enum import Enum


class UserRole(str, Enum):
    """Roles carried in the token's role claim."""
    ADMIN = "ADMIN"
    MODERATOR = "MODERATOR"
    USER = "USER"


# Role hierarchy: Each role includes permissions of all roles below it
ROLE_HIERARCHY = {
    UserRole.ADMIN: {UserRole.ADMIN, UserRole.MODERATOR, UserRole.USER},
    UserRole.MODERATOR: {UserRole.MODERATOR, UserRole.USER},
    UserRole.USER: {UserRole.USER},
}


def has_permission(user_role: UserRole, required_role: UserRole) -> bool:
    """Check if a user role satisfies a required role.

    Examples:
        >>> has_permission(UserRole.ADMIN, UserRole.USER)
        True
        >>> has_permission(UserRole.USER, UserRole.ADMIN)
        False
    """
    return required_role in ROLE_HIERARCHY.get(user_role, set())
