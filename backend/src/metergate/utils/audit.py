"""Admin audit trail.

Every mutating admin endpoint records who did what, to which target, why,
and the before/after state, in the same transaction as the change itself.
"""
from typing import Any
from uuid import UUID

import structlog
from fastapi import Request
from fastapi.encoders import jsonable_encoder
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from metergate.middleware.logging import get_request_id
from metergate.models.audit_log import AdminAuditLog

logger = structlog.get_logger(__name__)


def get_request_meta(request: Request | None) -> tuple[str | None, str | None]:
    """
    Client address and user agent for an audit row.

    The address is the first ``X-Forwarded-For`` hop, else ``X-Real-IP``,
    else the socket peer.

    Returns:
        Tuple of (ip_address, user_agent)
    """
    if request is None:
        return None, None

    forwarded = request.headers.get("x-forwarded-for", "")
    ip_address = forwarded.split(",")[0].strip() or request.headers.get("x-real-ip", "").strip() or None
    if ip_address is None and request.client:
        ip_address = request.client.host

    user_agent = request.headers.get("user-agent") or None
    return ip_address, user_agent[:500] if user_agent else None


async def log_admin_action(
    db: AsyncSession,
    actor_id: UUID,
    action: str,
    target_type: str,
    target_id: UUID | str,
    reason: str,
    before: Any = None,
    after: Any = None,
    request: Request | None = None,
) -> AdminAuditLog:
    """
    Record an admin action.

    Args:
        db: Database session of the action being audited
        actor_id: Admin performing the action
        action: Dotted action name (e.g. ``invoice.update``)
        target_type: Kind of entity changed
        target_id: Entity identifier
        reason: Admin-supplied justification
        before: State before the change (JSON-encodable)
        after: State after the change (JSON-encodable)
        request: Incoming request, for client address and request ID
    """
    ip_address, user_agent = get_request_meta(request)
    entry = AdminAuditLog(
        actor_user_id=actor_id,
        action=action,
        target_type=target_type,
        target_id=str(target_id),
        reason=reason,
        before_json=jsonable_encoder(before) if before is not None else None,
        after_json=jsonable_encoder(after) if after is not None else None,
        ip_address=ip_address,
        user_agent=user_agent,
        request_id=get_request_id(request) if request is not None else None,
    )
    db.add(entry)
    await db.flush()

    logger.info(
        "admin_action_audited",
        action=action,
        target_type=target_type,
        target_id=str(target_id),
        actor_id=str(actor_id),
    )
    return entry


async def list_admin_actions(
    db: AsyncSession,
    action: str | None = None,
    target_type: str | None = None,
    actor_id: UUID | None = None,
    page: int = 1,
    page_size: int = 50,
) -> tuple[list[AdminAuditLog], int]:
    """
    Audit entries, newest first, with optional filters.

    Returns:
        Tuple of (entries, total_count)
    """
    conditions = []
    if action:
        conditions.append(AdminAuditLog.action == action)
    if target_type:
        conditions.append(AdminAuditLog.target_type == target_type)
    if actor_id:
        conditions.append(AdminAuditLog.actor_user_id == actor_id)

    total = await db.scalar(select(func.count()).select_from(AdminAuditLog).where(*conditions))
    result = await db.execute(
        select(AdminAuditLog)
        .where(*conditions)
        .order_by(AdminAuditLog.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(result.scalars().all()), total or 0
