"""Account service: registration, referral credit and admin user maintenance."""
import re
import secrets
from datetime import datetime
from uuid import UUID

import structlog
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from metergate.config import settings
from metergate.exceptions import Conflict, InvalidRequest, NotFound
from metergate.models.api_key import ApiKey
from metergate.models.enums import Plan, UserRole
from metergate.models.user import User
from metergate.schemas.user import PERMANENT_BAN, UserRegister, UserUpdate
from metergate.services.api_key_service import ApiKeyService, base_daily_limit
from metergate.services.ban_service import BanService
from metergate.utils.clock import utcnow

logger = structlog.get_logger(__name__)

REFERRAL_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
REFERRAL_CODE_LENGTH = 8
MAX_REFERRAL_ATTEMPTS = 30
REFERRAL_CODE_PATTERN = re.compile(r"^[A-Z0-9]{6,12}$")
DEFAULT_KEY_LABEL = "Default Key"


class AccountService:
    """Service layer for user account operations."""

    def __init__(self, db: AsyncSession):
        """Initialize account service with database session."""
        self.db = db
        self.api_keys = ApiKeyService(db)

    async def generate_referral_code(self) -> str:
        """
        Produce an unused 8-character referral code.

        Raises:
            RuntimeError: No unique value after ``MAX_REFERRAL_ATTEMPTS`` tries
        """
        for _ in range(MAX_REFERRAL_ATTEMPTS):
            code = "".join(secrets.choice(REFERRAL_CODE_ALPHABET) for _ in range(REFERRAL_CODE_LENGTH))
            existing = await self.db.scalar(select(User.id).where(User.referral_code == code))
            if existing is None:
                return code
        raise RuntimeError("Failed to generate a unique referral code.")

    async def register(self, data: UserRegister) -> tuple[User, ApiKey]:
        """
        Create a FREE user with a default key, crediting the referrer if any.

        Args:
            data: Registration payload

        Returns:
            Tuple of (created user, default key)

        Raises:
            InvalidRequest: Malformed or unknown referral code
            Conflict: Email already registered
        """
        email = data.email.lower()
        referral_input = data.referral_code or ""
        if referral_input and not REFERRAL_CODE_PATTERN.match(referral_input):
            raise InvalidRequest("Invalid referral code format.")

        existing = await self.db.scalar(select(User.id).where(User.email == email))
        if existing is not None:
            raise Conflict("An account with this email already exists.")

        referrer_id = None
        if referral_input:
            referrer_id = await self.db.scalar(select(User.id).where(User.referral_code == referral_input))
            if referrer_id is None:
                raise InvalidRequest("Referral code is invalid.")

        user = User(
            email=email,
            name=data.name or None,
            plan=Plan.FREE,
            role=UserRole.USER,
            is_blocked=False,
            referral_code=await self.generate_referral_code(),
            referred_by_id=referrer_id,
            referral_count=0,
            referral_bonus_daily=0,
        )
        self.db.add(user)
        try:
            await self.db.flush()
        except IntegrityError as exc:
            raise Conflict("An account with this email already exists.") from exc

        api_key = await self.api_keys.issue_key(
            user, base_daily_limit(Plan.FREE), label=DEFAULT_KEY_LABEL, source="registration"
        )

        if referrer_id is not None:
            bonus = max(0, settings.referral_bonus_per_invite)
            await self.db.execute(
                update(User)
                .where(User.id == referrer_id)
                .values(
                    referral_count=User.referral_count + 1,
                    referral_bonus_daily=User.referral_bonus_daily + bonus,
                    updated_at=utcnow(),
                )
            )
            logger.info("referral_credited", referrer_id=str(referrer_id), user_id=str(user.id), bonus=bonus)

        logger.info("user_registered", user_id=str(user.id), referred=referrer_id is not None)
        return user, api_key

    async def get_user(self, user_id: UUID) -> User:
        """
        Get user by ID.

        Raises:
            NotFound: No user with that ID
        """
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFound("User not found.")
        return user

    async def list_users(
        self,
        search: str | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[User], int]:
        """
        List users, newest first, optionally filtered by email/name substring.

        Returns:
            Tuple of (users, total_count)
        """
        query = select(User)
        count_query = select(func.count()).select_from(User)
        if search:
            pattern = f"%{search.strip()}%"
            condition = or_(User.email.ilike(pattern), User.name.ilike(pattern))
            query = query.where(condition)
            count_query = count_query.where(condition)

        total = await self.db.scalar(count_query)
        query = query.order_by(User.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total or 0

    async def admin_update_user(
        self,
        user_id: UUID,
        changes: UserUpdate,
        actor: User,
        now: datetime | None = None,
    ) -> User:
        """
        Apply an admin patch to a user.

        Raises:
            NotFound: No user with that ID
            InvalidRequest: Self-block, self-demotion or inconsistent ban fields
        """
        now = now or utcnow()
        data = changes.model_dump(exclude_unset=True, exclude={"reason"})
        is_self = user_id == actor.id

        if is_self and data.get("is_blocked") is True:
            raise InvalidRequest("You cannot block your own account.")
        if is_self and data.get("role") == UserRole.USER:
            raise InvalidRequest("You cannot remove your own SUPERADMIN role.")
        if data.get("is_blocked") is True and data.get("ban_minutes") is None:
            raise InvalidRequest("ban_minutes is required when blocking a user.")
        if data.get("is_blocked") is not True and data.get("ban_minutes") is not None:
            raise InvalidRequest("ban_minutes can only be set when is_blocked is true.")

        user = await self.db.get(User, user_id, with_for_update=True)
        if user is None:
            raise NotFound("User not found.")

        if data.get("role") is not None:
            user.role = data["role"]
        if data.get("referral_bonus_daily") is not None:
            user.referral_bonus_daily = data["referral_bonus_daily"]

        if data.get("is_blocked") is False:
            BanService.clear_ban(user)
        elif data.get("is_blocked") is True:
            minutes = None if data["ban_minutes"] == PERMANENT_BAN else data["ban_minutes"]
            reason = (data.get("ban_reason") or "").strip() or None
            BanService.apply_ban(user, minutes, reason, now)

        await self.db.flush()
        logger.info(
            "user_admin_updated",
            user_id=str(user.id),
            actor_id=str(actor.id),
            is_blocked=user.is_blocked,
            role=user.role.value,
        )
        return user
