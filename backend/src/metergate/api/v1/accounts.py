"""Account API endpoints: registration and ban status."""
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from metergate.api.deps import get_authenticated_user, get_db
from metergate.models.user import User
from metergate.schemas.user import AccountRegistered, BanStatus, UserRegister
from metergate.services.account_service import AccountService
from metergate.services.ban_service import build_ban_info
from metergate.utils.clock import utcnow

router = APIRouter(tags=["Accounts"])


@router.post("/accounts/register", response_model=AccountRegistered, status_code=status.HTTP_201_CREATED)
async def register_account(
    account_data: UserRegister,
    db: AsyncSession = Depends(get_db),
) -> AccountRegistered:
    """
    Register a new account.

    - **email**: Account email (required, unique, stored lower-cased)
    - **name**: Display name (optional)
    - **referral_code**: Code of the inviting user (optional); credits them a daily quota bonus

    The account starts on FREE with one ACTIVE "Default Key".
    """
    service = AccountService(db)
    user, api_key = await service.register(account_data)
    await db.commit()
    return AccountRegistered(user=user, api_key=api_key)


@router.get("/account/status", response_model=BanStatus)
async def account_status(
    current_user: User = Depends(get_authenticated_user),
) -> BanStatus:
    """
    Ban state of the signed-in account.

    Expired temporary bans are cleared before the state is reported, so a
    user whose ban has run out sees ``blocked: false``.
    """
    now = utcnow()
    info = build_ban_info(current_user, now=now)
    return BanStatus(
        blocked=info.blocked,
        permanent=info.permanent,
        reason=info.reason,
        until=info.until,
        remaining_text=info.remaining_text,
        message=info.message,
        checked_at=now,
    )
