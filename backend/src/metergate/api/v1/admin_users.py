"""Admin user endpoints: bans, roles, referral bonus and key issuance."""
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from metergate.api.deps import admin_rate_limit, get_current_user, get_db
from metergate.auth.rbac import require_roles
from metergate.models.enums import UserRole
from metergate.models.user import User
from metergate.schemas.api_key import AdminApiKeyCreate, ApiKey
from metergate.schemas.user import User as UserSchema
from metergate.schemas.user import UserList, UserUpdate
from metergate.services.account_service import AccountService
from metergate.services.api_key_service import base_daily_limit
from metergate.utils.audit import log_admin_action

router = APIRouter(prefix="/admin/users", tags=["Admin"])


def _user_snapshot(user: User) -> dict:
    return UserSchema.model_validate(user).model_dump(mode="json")


@router.get("", response_model=UserList)
@require_roles(UserRole.SUPERADMIN)
async def list_users(
    search: str | None = Query(default=None, max_length=100, description="Email or name substring"),
    page: int = Query(default=1, ge=1, description="Page number (1-indexed)"),
    page_size: int = Query(default=50, ge=1, le=200, description="Items per page (max 200)"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> UserList:
    """List users, newest first."""
    users, total = await AccountService(db).list_users(search=search, page=page, page_size=page_size)
    return UserList(items=users, total=total, page=page, page_size=page_size)


@router.get("/{user_id}", response_model=UserSchema)
@require_roles(UserRole.SUPERADMIN)
async def get_user(
    user_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> UserSchema:
    """Get user by ID."""
    return await AccountService(db).get_user(user_id)


@router.patch(
    "/{user_id}",
    response_model=UserSchema,
    dependencies=[Depends(admin_rate_limit("admin-user-patch", 30, "Too many admin actions."))],
)
@require_roles(UserRole.SUPERADMIN)
async def update_user(
    user_id: UUID,
    changes: UserUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> UserSchema:
    """
    Block, unblock or re-role a user, or set their referral bonus.

    - **is_blocked** true requires **ban_minutes**: -1 for permanent, otherwise minutes
    - **is_blocked** false clears every ban field
    - **role**: USER or SUPERADMIN
    - **referral_bonus_daily**: 0 to 100000

    Plans are not editable here; use invoices or the subscription override.
    """
    service = AccountService(db)
    before = _user_snapshot(await service.get_user(user_id))
    user = await service.admin_update_user(user_id, changes, actor=current_user)
    await log_admin_action(
        db,
        actor_id=current_user.id,
        action="user.update",
        target_type="user",
        target_id=user.id,
        reason=changes.reason,
        before=before,
        after=_user_snapshot(user),
        request=request,
    )
    await db.commit()
    return user


@router.post(
    "/{user_id}/api-keys",
    response_model=ApiKey,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(admin_rate_limit("admin-user-api-key-create", 20, "Too many API key create actions."))],
)
@require_roles(UserRole.SUPERADMIN)
async def issue_user_key(
    user_id: UUID,
    key_data: AdminApiKeyCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApiKey:
    """
    Issue a key to any user, bypassing plan key rules.

    **daily_limit** defaults to the base limit of the user's plan.
    """
    service = AccountService(db)
    user = await service.get_user(user_id)
    api_key = await service.api_keys.issue_key(
        user,
        key_data.daily_limit or base_daily_limit(user.plan),
        label=key_data.label or None,
        source="admin",
    )
    await log_admin_action(
        db,
        actor_id=current_user.id,
        action="api_key.issue",
        target_type="api_key",
        target_id=api_key.id,
        reason=key_data.reason,
        after=ApiKey.model_validate(api_key).model_dump(mode="json", exclude={"key"}),
        request=request,
    )
    await db.commit()
    return api_key
