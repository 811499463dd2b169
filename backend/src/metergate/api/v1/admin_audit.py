"""Admin audit trail endpoints."""
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from metergate.api.deps import get_current_user, get_db
from metergate.auth.rbac import require_roles
from metergate.models.enums import UserRole
from metergate.models.user import User
from metergate.schemas.audit_log import AuditLogList
from metergate.utils.audit import list_admin_actions

router = APIRouter(prefix="/admin/audit-logs", tags=["Admin"])


@router.get("", response_model=AuditLogList)
@require_roles(UserRole.SUPERADMIN)
async def list_audit_logs(
    action: str | None = Query(default=None, max_length=80, description="Filter by action, e.g. invoice.update"),
    target_type: str | None = Query(default=None, max_length=40, description="Filter by target type"),
    actor_id: UUID | None = Query(default=None, description="Filter by acting admin"),
    page: int = Query(default=1, ge=1, description="Page number (1-indexed)"),
    page_size: int = Query(default=50, ge=1, le=200, description="Items per page (max 200)"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> AuditLogList:
    """List admin actions, newest first."""
    entries, total = await list_admin_actions(
        db,
        action=action,
        target_type=target_type,
        actor_id=actor_id,
        page=page,
        page_size=page_size,
    )
    return AuditLogList(items=entries, total=total, page=page, page_size=page_size)
