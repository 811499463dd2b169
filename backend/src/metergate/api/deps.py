"""FastAPI dependencies for database sessions and session authentication."""
from typing import Optional
from uuid import UUID

import jwt
import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from metergate.auth.jwt import jwt_auth
from metergate.database import get_db
from metergate.exceptions import AccountBlocked, RateLimited
from metergate.middleware.rate_limit import AdminRateLimiter, get_admin_rate_limiter
from metergate.models.enums import UserRole
from metergate.models.user import User
from metergate.services.ban_service import BanService, build_ban_info

logger = structlog.get_logger(__name__)

# Missing credentials are reported through our own 401, not FastAPI's 403
security = HTTPBearer(auto_error=False)

__all__ = ["admin_rate_limit", "get_authenticated_user", "get_current_user", "get_db"]


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_authenticated_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Resolve the bearer token to a user and normalize their ban state.

    Blocked users are returned, not rejected; use ``get_current_user`` for
    endpoints a blocked user must not reach.

    Raises:
        HTTPException: 401 if the token is missing, invalid or expired, or the user is gone
    """
    if not credentials:
        raise _unauthorized("Authentication required")

    token = credentials.credentials
    try:
        payload = jwt_auth.verify_access_token(token)
        user_id = UUID(payload["sub"])
    except jwt.ExpiredSignatureError:
        logger.warning("token_expired")
        raise _unauthorized("Token has expired")
    except (jwt.InvalidTokenError, ValueError) as e:
        logger.warning("invalid_token", error=str(e))
        raise _unauthorized("Invalid authentication token")

    user = await db.get(User, user_id)
    if user is None:
        logger.warning("token_user_missing", user_id=str(user_id))
        raise _unauthorized("Authentication required")

    # Expired temporary bans are cleared on this path too
    if await BanService(db).normalize_ban_state(user):
        await db.commit()

    structlog.contextvars.bind_contextvars(user_id=str(user.id))
    return user


async def get_current_user(
    user: User = Depends(get_authenticated_user),
) -> User:
    """
    Authenticated user who is not blocked.

    Raises:
        AccountBlocked: 403 with the ban message
    """
    if user.is_blocked:
        info = build_ban_info(user)
        raise AccountBlocked(
            info.message,
            remaining_limit=None,
            permanent=info.permanent,
            reason=info.reason,
        )
    return user


def admin_rate_limit(scope: str, max_hits: int, message: str):
    """
    Dependency limiting one admin action scope to ``max_hits`` per window per admin.

    Usage:
        @router.patch("/{user_id}", dependencies=[Depends(admin_rate_limit("admin-user-patch", 30, "..."))])

    Non-admins are left to ``require_roles``, which rejects them without
    spending anyone's budget.

    Raises:
        RateLimited: 429 with ``Retry-After`` once the budget is spent
    """
    async def enforce(
        current_user: User = Depends(get_current_user),
        limiter: AdminRateLimiter = Depends(get_admin_rate_limiter),
    ) -> None:
        if current_user.role != UserRole.SUPERADMIN:
            return

        decision = await limiter.check(current_user.id, scope, max_hits)
        if not decision.allowed:
            logger.warning(
                "admin_rate_limited",
                user_id=str(current_user.id),
                scope=scope,
                retry_after=decision.retry_after,
            )
            raise RateLimited(f"{message} Retry in {decision.retry_after}s.", retry_after=decision.retry_after)

    return enforce
