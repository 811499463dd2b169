"""Admin subscription endpoints."""
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from metergate.api.deps import admin_rate_limit, get_current_user, get_db
from metergate.auth.rbac import require_roles
from metergate.models.enums import UserRole
from metergate.models.user import User
from metergate.schemas.subscription import Subscription, SubscriptionOverride
from metergate.services.subscription_service import SubscriptionService, subscription_snapshot
from metergate.utils.audit import log_admin_action

router = APIRouter(prefix="/admin/subscriptions", tags=["Admin"])


@router.get("/{user_id}", response_model=list[Subscription])
@require_roles(UserRole.SUPERADMIN)
async def list_user_subscriptions(
    user_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[Subscription]:
    """A user's subscription history, newest first."""
    return await SubscriptionService(db).list_for_user(user_id)


@router.patch(
    "/{user_id}",
    response_model=Subscription,
    dependencies=[Depends(admin_rate_limit("admin-user-subscription-patch", 25, "Too many subscription updates."))],
)
@require_roles(UserRole.SUPERADMIN)
async def override_subscription(
    user_id: UUID,
    changes: SubscriptionOverride,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Subscription:
    """
    Manually override a user's latest subscription.

    - **plan**, **status**, **start_at**, **end_at**, **auto_downgrade_to**: any subset

    Making a subscription ACTIVE expires any other ACTIVE one first. The
    user's plan is recomputed from the result.
    """
    subscription, before = await SubscriptionService(db).override(user_id, changes, actor_id=current_user.id)
    await log_admin_action(
        db,
        actor_id=current_user.id,
        action="subscription.override",
        target_type="user",
        target_id=user_id,
        reason=changes.reason,
        before=before,
        after=subscription_snapshot(subscription),
        request=request,
    )
    await db.commit()
    return subscription
