"""Authentication dependencies for staff routes and the cron trigger.

Staff requests carry a bearer JWT whose claims name the user, role, and
clinic. The cron trigger carries the shared cron secret instead.
"""

from __future__ import annotations

import hmac
import logging
import uuid
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from src.config.settings import get_settings
from src.shared.types import UserRole

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


class AuthError(HTTPException):
    """401 with a bearer challenge."""

    def __init__(self, detail: str = "Unauthorized") -> None:
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


@dataclass(frozen=True)
class CurrentUser:
    """Authenticated staff member.

    Attributes:
        user_id: User UUID from the ``sub`` claim.
        role: admin, clinic, or doctor.
        clinic_id: Clinic the user belongs to, if any.
    """

    user_id: uuid.UUID
    role: UserRole
    clinic_id: uuid.UUID | None = None


def decode_user_token(token: str) -> CurrentUser:
    """Verify a bearer JWT and read the user claims.

    Args:
        token: Encoded JWT.

    Returns:
        CurrentUser built from the claims.

    Raises:
        AuthError: If the token is invalid or its claims are malformed.
    """
    settings = get_settings()
    if not settings.jwt_secret_key:
        logger.error("jwt_secret_not_configured")
        raise AuthError("Authentication not configured")
    try:
        claims = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        logger.warning("jwt_verification_failed", extra={"error": str(exc)})
        raise AuthError("Invalid token") from exc
    try:
        clinic_id = claims.get("clinic_id")
        return CurrentUser(
            user_id=uuid.UUID(str(claims["sub"])),
            role=UserRole(claims["role"]),
            clinic_id=uuid.UUID(str(clinic_id)) if clinic_id else None,
        )
    except (KeyError, ValueError) as exc:
        logger.warning("jwt_claims_invalid")
        raise AuthError("Invalid token") from exc


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> CurrentUser:
    """FastAPI dependency resolving the bearer token to a user.

    Raises:
        AuthError: If the header is missing or the token is invalid.
    """
    if credentials is None:
        raise AuthError()
    return decode_user_token(credentials.credentials)


def require_roles(
    *roles: UserRole,
) -> Callable[..., Coroutine[Any, Any, CurrentUser]]:
    """Build a dependency that admits only the given roles.

    Args:
        *roles: Allowed roles.

    Returns:
        FastAPI dependency returning the authenticated user.
    """
    allowed = frozenset(roles)

    async def _check(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
        return user

    return _check


async def verify_cron_secret(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> None:
    """FastAPI dependency checking ``Authorization: Bearer <cron_secret>``.

    Raises:
        AuthError: If the header is missing, the secret is unset, or the
            value does not match.
    """
    if credentials is None:
        raise AuthError()
    expected = get_settings().cron_secret
    if not expected or not hmac.compare_digest(credentials.credentials, expected):
        logger.warning("cron_secret_rejected")
        raise AuthError()
