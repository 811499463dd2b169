"""Role-based access control for dashboard and admin endpoints.

Two roles exist: USER and SUPERADMIN. The role stored on the user row is
authoritative; the token's ``role`` claim is never trusted.
"""
from functools import wraps
from typing import Callable

import structlog

from metergate.exceptions import PermissionDenied
from metergate.models.enums import UserRole

logger = structlog.get_logger(__name__)


def require_roles(*required_roles: UserRole):
    """
    Decorator to require specific roles for endpoint access.

    Usage:
        @require_roles(UserRole.SUPERADMIN)
        async def update_invoice(..., current_user: User = Depends(get_current_user)):
            ...

    Raises:
        PermissionDenied: 403 if the user's stored role is not allowed
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            # Injected by the get_current_user dependency
            current_user = kwargs.get("current_user")

            if current_user is None:
                logger.error("rbac_missing_current_user", endpoint=func.__name__)
                raise PermissionDenied()

            if current_user.role not in required_roles:
                logger.warning(
                    "rbac_permission_denied",
                    user_id=str(current_user.id),
                    user_role=current_user.role.value,
                    required_roles=[r.value for r in required_roles],
                    endpoint=func.__name__,
                )
                raise PermissionDenied()

            return await func(*args, **kwargs)

        return wrapper
    return decorator
