"""Admin API key endpoints."""
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from metergate.api.deps import admin_rate_limit, get_current_user, get_db
from metergate.auth.rbac import require_roles
from metergate.models.enums import ApiKeyStatus, UserRole
from metergate.models.user import User
from metergate.schemas.api_key import ApiKey, ApiKeyBulkRevoke, ApiKeyList, ApiKeyUpdate, BulkRevokeResult
from metergate.services.api_key_service import ApiKeyService
from metergate.utils.audit import log_admin_action

router = APIRouter(prefix="/admin/api-keys", tags=["Admin"])


def _key_snapshot(api_key) -> dict:
    return ApiKey.model_validate(api_key).model_dump(mode="json", exclude={"key"})


@router.get("", response_model=ApiKeyList)
@require_roles(UserRole.SUPERADMIN)
async def list_api_keys(
    user_id: UUID | None = Query(default=None, description="Filter by owner"),
    status: ApiKeyStatus | None = Query(default=None, description="Filter by status"),
    page: int = Query(default=1, ge=1, description="Page number (1-indexed)"),
    page_size: int = Query(default=50, ge=1, le=200, description="Items per page (max 200)"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApiKeyList:
    """List keys across all users, newest first."""
    keys, total = await ApiKeyService(db).list_keys(user_id=user_id, status=status, page=page, page_size=page_size)
    return ApiKeyList(items=keys, total=total, page=page, page_size=page_size)


@router.patch(
    "/{api_key_id}",
    response_model=ApiKey,
    dependencies=[Depends(admin_rate_limit("admin-api-key-patch", 50, "Too many API key actions."))],
)
@require_roles(UserRole.SUPERADMIN)
async def update_api_key(
    api_key_id: UUID,
    changes: ApiKeyUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApiKey:
    """
    Change a key's status, daily limit or label.

    **daily_limit** is clamped to 0..the PAID plan limit.
    """
    service = ApiKeyService(db)
    before = _key_snapshot(await service.get_key(api_key_id))
    api_key = await service.admin_update_key(api_key_id, changes)
    await log_admin_action(
        db,
        actor_id=current_user.id,
        action="api_key.update",
        target_type="api_key",
        target_id=api_key.id,
        reason=changes.reason,
        before=before,
        after=_key_snapshot(api_key),
        request=request,
    )
    await db.commit()
    return api_key


@router.post(
    "/bulk-revoke",
    response_model=BulkRevokeResult,
    dependencies=[Depends(admin_rate_limit("admin-api-key-bulk-revoke", 10, "Too many bulk actions."))],
)
@require_roles(UserRole.SUPERADMIN)
async def bulk_revoke_api_keys(
    payload: ApiKeyBulkRevoke,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> BulkRevokeResult:
    """Revoke up to 200 keys at once. Already revoked or unknown IDs are skipped."""
    api_key_ids = list(dict.fromkeys(payload.api_key_ids))
    revoked = await ApiKeyService(db).bulk_revoke(api_key_ids)
    await log_admin_action(
        db,
        actor_id=current_user.id,
        action="api_key.bulk_revoke",
        target_type="api_key",
        target_id="bulk",
        reason=payload.reason,
        before={"api_key_ids": api_key_ids},
        after={"revoked": revoked},
        request=request,
    )
    await db.commit()
    return BulkRevokeResult(revoked=revoked)
