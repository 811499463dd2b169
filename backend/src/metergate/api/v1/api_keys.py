"""API key endpoints for the signed-in owner."""
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from metergate.api.deps import get_current_user, get_db
from metergate.models.user import User
from metergate.schemas.api_key import ApiKey, ApiKeyCreate, ApiKeyList
from metergate.services.api_key_service import ApiKeyService

router = APIRouter(prefix="/api-keys", tags=["API Keys"])


@router.get("", response_model=ApiKeyList)
async def list_own_keys(
    page: int = Query(default=1, ge=1, description="Page number (1-indexed)"),
    page_size: int = Query(default=50, ge=1, le=200, description="Items per page (max 200)"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApiKeyList:
    """List the caller's keys, newest first, including revoked ones."""
    keys, total = await ApiKeyService(db).list_keys(user_id=current_user.id, page=page, page_size=page_size)
    return ApiKeyList(items=keys, total=total, page=page, page_size=page_size)


@router.post("", response_model=ApiKey, status_code=status.HTTP_201_CREATED)
async def create_own_key(
    key_data: ApiKeyCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApiKey:
    """
    Create an additional key.

    Only SUPERADMIN accounts and RESELLER plans may create extra keys:
    - **label**: Optional label (defaults to "API Key #n")
    - **daily_limit**: Optional; must not exceed the per-key maximum for the plan
    """
    api_key = await ApiKeyService(db).create_own_key(current_user, key_data)
    await db.commit()
    return api_key


@router.post("/{api_key_id}/revoke", response_model=ApiKey)
async def revoke_own_key(
    api_key_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApiKey:
    """
    Revoke one of the caller's keys.

    Keys are never deleted. Revoking an already revoked key is a no-op.
    Plans that cannot create keys cannot revoke their last ACTIVE key.
    """
    api_key = await ApiKeyService(db).revoke_own_key(current_user, api_key_id)
    await db.commit()
    return api_key
