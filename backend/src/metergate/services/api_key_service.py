"""API key issuance, revocation and admin maintenance."""
import secrets
from dataclasses import dataclass
from uuid import UUID

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from metergate.config import settings
from metergate.exceptions import InvalidRequest, NotFound, PermissionDenied
from metergate.metrics import api_keys_created_total
from metergate.models.api_key import ApiKey
from metergate.models.enums import ApiKeyStatus, Plan, UserRole
from metergate.models.user import User
from metergate.schemas.api_key import ApiKeyCreate, ApiKeyUpdate
from metergate.utils.clock import utcnow

logger = structlog.get_logger(__name__)

KEY_PREFIX = "jz_"
MAX_KEY_ATTEMPTS = 30


@dataclass(frozen=True)
class KeyCreateRule:
    """What an owner may create on their own."""

    can_create: bool
    max_keys: int
    max_limit_per_key: int


def base_daily_limit(plan: Plan) -> int:
    """Default daily limit for a new key on ``plan``."""
    if plan == Plan.FREE:
        return settings.free_daily_limit
    if plan == Plan.RESELLER:
        return settings.reseller_daily_limit
    return settings.paid_daily_limit


def create_rule(plan: Plan, role: UserRole) -> KeyCreateRule:
    """Key creation allowance by role and plan. SUPERADMIN wins over plan."""
    if role == UserRole.SUPERADMIN:
        return KeyCreateRule(True, settings.superadmin_max_keys, settings.paid_daily_limit)
    if plan == Plan.RESELLER:
        return KeyCreateRule(
            True,
            max(1, settings.reseller_max_keys),
            max(1, settings.reseller_max_limit_per_key),
        )
    return KeyCreateRule(False, 1, base_daily_limit(plan))


class ApiKeyService:
    """Service layer for API key operations."""

    def __init__(self, db: AsyncSession):
        """Initialize API key service with database session."""
        self.db = db

    async def generate_key(self) -> str:
        """
        Produce an unused ``jz_`` key.

        Raises:
            RuntimeError: No unique value after ``MAX_KEY_ATTEMPTS`` tries
        """
        for _ in range(MAX_KEY_ATTEMPTS):
            candidate = f"{KEY_PREFIX}{secrets.token_hex(24)}"
            existing = await self.db.scalar(select(ApiKey.id).where(ApiKey.key == candidate))
            if existing is None:
                return candidate
        raise RuntimeError("Failed to generate a unique API key.")

    async def get_key(self, api_key_id: UUID) -> ApiKey:
        api_key = await self.db.get(ApiKey, api_key_id)
        if api_key is None:
            raise NotFound("API key not found.")
        return api_key

    async def list_keys(
        self,
        user_id: UUID | None = None,
        status: ApiKeyStatus | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[ApiKey], int]:
        """
        List keys, newest first.

        Returns:
            Tuple of (keys, total_count)
        """
        query = select(ApiKey)
        count_query = select(func.count()).select_from(ApiKey)
        if user_id:
            query = query.where(ApiKey.user_id == user_id)
            count_query = count_query.where(ApiKey.user_id == user_id)
        if status:
            query = query.where(ApiKey.status == status)
            count_query = count_query.where(ApiKey.status == status)

        total = await self.db.scalar(count_query)
        query = query.order_by(ApiKey.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total or 0

    async def issue_key(
        self,
        user: User,
        daily_limit: int,
        label: str | None = None,
        source: str = "admin",
    ) -> ApiKey:
        """Create an ACTIVE key for ``user`` without applying plan rules."""
        if label is None:
            total = await self.db.scalar(select(func.count()).select_from(ApiKey).where(ApiKey.user_id == user.id))
            label = f"API Key #{(total or 0) + 1}"

        api_key = ApiKey(
            user_id=user.id,
            key=await self.generate_key(),
            label=label,
            status=ApiKeyStatus.ACTIVE,
            daily_limit=daily_limit,
        )
        self.db.add(api_key)
        await self.db.flush()

        api_keys_created_total.labels(source=source).inc()
        logger.info(
            "api_key_created",
            api_key_id=str(api_key.id),
            user_id=str(user.id),
            daily_limit=daily_limit,
            source=source,
        )
        return api_key

    async def create_own_key(self, user: User, data: ApiKeyCreate) -> ApiKey:
        """
        Owner-initiated key creation under the plan/role rules.

        Raises:
            PermissionDenied: Plan does not allow extra keys
            InvalidRequest: Active key cap reached or limit above the per-key maximum
        """
        rule = create_rule(user.plan, user.role)
        if not rule.can_create:
            raise PermissionDenied("Your role/plan is not allowed to create additional API keys.")

        active = await self._count_active(user.id)
        if active >= rule.max_keys:
            raise InvalidRequest(f"Maximum active API keys reached ({rule.max_keys}).")

        daily_limit = data.daily_limit or min(base_daily_limit(user.plan), rule.max_limit_per_key)
        if daily_limit > rule.max_limit_per_key:
            raise InvalidRequest(f"Daily limit cannot exceed {rule.max_limit_per_key} per key.")

        return await self.issue_key(user, daily_limit, label=data.label or None, source="owner")

    async def revoke_own_key(self, user: User, api_key_id: UUID) -> ApiKey:
        """
        Owner revocation. Idempotent on already-revoked keys.

        Raises:
            NotFound: Key is not the caller's
            InvalidRequest: Would leave a plan that cannot create keys with none
        """
        result = await self.db.execute(select(ApiKey).where(ApiKey.id == api_key_id, ApiKey.user_id == user.id))
        api_key = result.scalar_one_or_none()
        if api_key is None:
            raise NotFound("API key not found.")
        if api_key.status == ApiKeyStatus.REVOKED:
            return api_key

        if await self._count_active(user.id) <= 1 and not create_rule(user.plan, user.role).can_create:
            raise InvalidRequest(
                "Cannot revoke the last active API key for your plan. Upgrade or contact admin first."
            )

        api_key.status = ApiKeyStatus.REVOKED
        await self.db.flush()
        logger.info("api_key_revoked", api_key_id=str(api_key.id), user_id=str(user.id))
        return api_key

    async def admin_update_key(self, api_key_id: UUID, changes: ApiKeyUpdate) -> ApiKey:
        """Admin patch; ``daily_limit`` is clamped to 0..paid limit."""
        api_key = await self.get_key(api_key_id)
        data = changes.model_dump(exclude_unset=True, exclude={"reason"})

        if data.get("status") is not None:
            api_key.status = data["status"]
        if data.get("daily_limit") is not None:
            api_key.daily_limit = max(0, min(data["daily_limit"], settings.paid_daily_limit))
        if "label" in data:
            api_key.label = data["label"] or None
        await self.db.flush()

        logger.info(
            "api_key_admin_updated",
            api_key_id=str(api_key.id),
            status=api_key.status.value,
            daily_limit=api_key.daily_limit,
        )
        return api_key

    async def bulk_revoke(self, api_key_ids: list[UUID]) -> int:
        """Revoke every ACTIVE key in ``api_key_ids``; returns how many changed."""
        result = await self.db.execute(
            update(ApiKey)
            .where(ApiKey.id.in_(api_key_ids), ApiKey.status == ApiKeyStatus.ACTIVE)
            .values(status=ApiKeyStatus.REVOKED, updated_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )
        logger.info("api_keys_bulk_revoked", requested=len(api_key_ids), revoked=result.rowcount)
        return result.rowcount

    async def _count_active(self, user_id: UUID) -> int:
        count = await self.db.scalar(
            select(func.count())
            .select_from(ApiKey)
            .where(ApiKey.user_id == user_id, ApiKey.status == ApiKeyStatus.ACTIVE)
        )
        return count or 0
