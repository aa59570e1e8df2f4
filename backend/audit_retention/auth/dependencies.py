"""FastAPI dependencies for authentication and authorization.

Usage:
    @router.post("/cleanup")
    def cleanup(admin: CurrentUser = Depends(get_current_admin)):
        ...
"""

from dataclasses import dataclass
from typing import Callable, Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .jwt import decode_token
from .roles import UserRole, has_permission

# HTTP Bearer token security scheme
security = HTTPBearer()


@dataclass(frozen=True)
class CurrentUser:
    """Authenticated caller, built from token claims only."""
    id: str
    role: str
    email: Optional[str] = None


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> CurrentUser:
    """Validate the bearer token and return the caller.

    Raises:
        HTTPException 401: If token is invalid, expired, or missing the sub claim
    """
    try:
        payload = decode_token(credentials.credentials)
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Token validation unavailable: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing user ID claim",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return CurrentUser(
        id=str(user_id),
        role=str(payload.get("role") or ""),
        email=payload.get("email"),
    )


def require_role(required_role: UserRole) -> Callable:
    """Create a dependency that enforces role-based access control.

    Raises:
        HTTPException 403: If the caller's role is insufficient
    """

    def role_dependency(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        try:
            user_role = UserRole(current_user.role)
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Unknown role: {current_user.role or '<none>'}",
            )

        if not has_permission(user_role, required_role):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient permissions. Required role: {required_role.value}",
            )

        return current_user

    return role_dependency


def get_current_admin(
    current_user: CurrentUser = Depends(require_role(UserRole.ADMIN))
) -> CurrentUser:
    """Convenience dependency for ADMIN-only endpoints."""
    return current_user
