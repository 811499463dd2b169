"""Admin endpoint-catalog controls."""
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from metergate.api.deps import admin_rate_limit, get_current_user, get_db
from metergate.auth.rbac import require_roles
from metergate.models.enums import UserRole
from metergate.models.user import User
from metergate.schemas.api_endpoint import ApiEndpoint, ApiEndpointUpdate
from metergate.services.endpoint_catalog import EndpointCatalogService
from metergate.utils.audit import log_admin_action

router = APIRouter(prefix="/admin/apis", tags=["Admin"])


@router.get("", response_model=list[ApiEndpoint])
@require_roles(UserRole.SUPERADMIN)
async def list_apis(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[ApiEndpoint]:
    """Every catalog entry, including maintenance notes."""
    endpoints = await EndpointCatalogService(db).list_endpoints()
    await db.commit()
    return endpoints


@router.patch(
    "/{endpoint_id}",
    response_model=ApiEndpoint,
    dependencies=[Depends(admin_rate_limit("admin-api-endpoint-patch", 40, "Too many endpoint updates."))],
)
@require_roles(UserRole.SUPERADMIN)
async def update_api_status(
    endpoint_id: UUID,
    changes: ApiEndpointUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApiEndpoint:
    """
    Set an endpoint ACTIVE, NON_ACTIVE or MAINTENANCE.

    NON_ACTIVE and MAINTENANCE endpoints reject calls with 503 before any
    quota is consumed.
    """
    service = EndpointCatalogService(db)
    before = ApiEndpoint.model_validate(await service.get_endpoint(endpoint_id)).model_dump(mode="json")
    endpoint = await service.update_status(endpoint_id, changes)
    await log_admin_action(
        db,
        actor_id=current_user.id,
        action="api_endpoint.update",
        target_type="api_endpoint",
        target_id=endpoint.id,
        reason=changes.reason,
        before=before,
        after=ApiEndpoint.model_validate(endpoint).model_dump(mode="json"),
        request=request,
    )
    await db.commit()
    return endpoint
