"""Integration tests for the admin console endpoints and their audit trail."""
from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from metergate.models.enums import ApiKeyStatus, Plan
from metergate.models.user import User
from metergate.services.quota_ledger import QuotaLedger
from metergate.utils.clock import utc_day, utcnow
from utils.factories import REASON, auth_headers, create_admin, create_api_key, create_user, iso


def _invoice_payload(user: User, **overrides) -> dict:
    start = utcnow().replace(microsecond=0)
    payload = {
        "user_id": str(user.id),
        "plan": "PAID",
        "amount": 5000,
        "currency": "idr",
        "period_start": iso(start),
        "period_end": iso(start + timedelta(days=30)),
        "reason": REASON,
    }
    payload.update(overrides)
    return payload


async def _reload(db: AsyncSession, user: User) -> User:
    return await db.get(User, user.id, populate_existing=True)


@pytest.mark.asyncio
async def test_non_admin_forbidden(client: AsyncClient, db_session: AsyncSession) -> None:
    """Test that admin endpoints require the SUPERADMIN role."""
    user = await create_user(db_session)

    response = await client.get("/v1/admin/users", headers=auth_headers(user))

    assert response.status_code == 403
    assert response.json() == {"status": False, "code": 403, "message": "Forbidden."}


@pytest.mark.asyncio
async def test_create_paid_invoice_activates_plan_and_audits(client: AsyncClient, db_session: AsyncSession) -> None:
    """Test that a PAID invoice created by an admin upgrades the user and is audited."""
    admin = await create_admin(db_session)
    user = await create_user(db_session)
    headers = auth_headers(admin)

    response = await client.post(
        "/v1/admin/billing/invoices", json=_invoice_payload(user, status="PAID"), headers=headers
    )

    assert response.status_code == 201
    invoice = response.json()
    assert invoice["status"] == "PAID"
    assert invoice["currency"] == "IDR"
    assert invoice["approved_by_id"] == str(admin.id)
    assert (await _reload(db_session, user)).plan == Plan.PAID

    logs = await client.get("/v1/admin/audit-logs", params={"action": "invoice.create"}, headers=headers)
    assert logs.status_code == 200
    (entry,) = logs.json()["items"]
    assert entry["target_id"] == invoice["id"]
    assert entry["actor_user_id"] == str(admin.id)
    assert entry["reason"] == REASON
    assert entry["after_json"]["status"] == "PAID"


@pytest.mark.asyncio
async def test_short_reason_rejected(client: AsyncClient, db_session: AsyncSession) -> None:
    """Test that mutating admin requests need a meaningful reason."""
    admin = await create_admin(db_session)
    user = await create_user(db_session)

    response = await client.post(
        "/v1/admin/billing/invoices", json=_invoice_payload(user, reason="ok"), headers=auth_headers(admin)
    )

    assert response.status_code == 400
    assert response.json()["details"][0]["field"] == "reason"


@pytest.mark.asyncio
async def test_patch_invoice_lifecycle(client: AsyncClient, db_session: AsyncSession) -> None:
    """Test period validation, cancellation fallback and final states over HTTP."""
    admin = await create_admin(db_session)
    user = await create_user(db_session)
    headers = auth_headers(admin)
    created = await client.post(
        "/v1/admin/billing/invoices", json=_invoice_payload(user, status="PAID"), headers=headers
    )
    invoice = created.json()
    url = f"/v1/admin/billing/invoices/{invoice['id']}"

    bad_period = await client.patch(
        url, json={"period_end": invoice["period_start"], "reason": REASON}, headers=headers
    )
    assert bad_period.status_code == 400

    canceled = await client.patch(url, json={"status": "CANCELED", "reason": REASON}, headers=headers)
    assert canceled.status_code == 200
    assert canceled.json()["status"] == "CANCELED"
    assert (await _reload(db_session, user)).plan == Plan.FREE

    reopened = await client.patch(url, json={"status": "PAID", "reason": REASON}, headers=headers)
    assert reopened.status_code == 409
    assert (await _reload(db_session, user)).plan == Plan.FREE


@pytest.mark.asyncio
async def test_block_user_then_gate_rejects(client: AsyncClient, db_session: AsyncSession) -> None:
    """Test that a temporary admin ban stops gated calls until lifted."""
    admin = await create_admin(db_session)
    user = await create_user(db_session)
    api_key = await create_api_key(db_session, user)
    headers = auth_headers(admin)

    blocked = await client.patch(
        f"/v1/admin/users/{user.id}",
        json={"is_blocked": True, "ban_minutes": 60, "ban_reason": "Scraping", "reason": REASON},
        headers=headers,
    )
    assert blocked.status_code == 200
    assert blocked.json()["is_blocked"] is True
    assert blocked.json()["ban_reason"] == "Scraping"

    gated = await client.get("/api/country-time", params={"country": "id", "apikey": api_key.key})
    assert gated.status_code == 403
    assert gated.json()["message"].startswith("Account blocked for")
    assert gated.json()["remaining_limit"] == 0

    unblocked = await client.patch(
        f"/v1/admin/users/{user.id}", json={"is_blocked": False, "reason": REASON}, headers=headers
    )
    body = unblocked.json()
    assert body["is_blocked"] is False
    assert body["blocked_at"] is None
    assert body["ban_until"] is None
    assert body["ban_reason"] is None


@pytest.mark.asyncio
async def test_block_requires_minutes_and_another_user(client: AsyncClient, db_session: AsyncSession) -> None:
    """Test that blocking needs ban_minutes and an admin cannot block themselves."""
    admin = await create_admin(db_session)
    user = await create_user(db_session)
    headers = auth_headers(admin)

    missing = await client.patch(
        f"/v1/admin/users/{user.id}", json={"is_blocked": True, "reason": REASON}, headers=headers
    )
    assert missing.status_code == 400
    assert missing.json()["message"] == "ban_minutes is required when blocking a user."

    self_block = await client.patch(
        f"/v1/admin/users/{admin.id}",
        json={"is_blocked": True, "ban_minutes": -1, "reason": REASON},
        headers=headers,
    )
    assert self_block.status_code == 400
    assert self_block.json()["message"] == "You cannot block your own account."


@pytest.mark.asyncio
async def test_issue_and_manage_keys(client: AsyncClient, db_session: AsyncSession) -> None:
    """Test key issuance, limit clamping and bulk revocation."""
    admin = await create_admin(db_session)
    user = await create_user(db_session)
    existing = await create_api_key(db_session, user)
    headers = auth_headers(admin)

    issued = await client.post(
        f"/v1/admin/users/{user.id}/api-keys", json={"label": "Partner", "reason": REASON}, headers=headers
    )
    assert issued.status_code == 201
    assert issued.json()["daily_limit"] == 100
    assert issued.json()["user_id"] == str(user.id)

    patched = await client.patch(
        f"/v1/admin/api-keys/{existing.id}", json={"daily_limit": 999999, "reason": REASON}, headers=headers
    )
    assert patched.json()["daily_limit"] == 5000

    revoked = await client.post(
        "/v1/admin/api-keys/bulk-revoke",
        json={"api_key_ids": [str(existing.id), issued.json()["id"], str(existing.id)], "reason": REASON},
        headers=headers,
    )
    assert revoked.json() == {"revoked": 2}

    listing = await client.get(
        "/v1/admin/api-keys", params={"user_id": str(user.id), "status": ApiKeyStatus.REVOKED.value}, headers=headers
    )
    assert listing.json()["total"] == 2


@pytest.mark.asyncio
async def test_subscription_override(client: AsyncClient, db_session: AsyncSession) -> None:
    """Test that an override grants a plan and is listed in the history."""
    admin = await create_admin(db_session)
    user = await create_user(db_session)
    headers = auth_headers(admin)

    response = await client.patch(
        f"/v1/admin/subscriptions/{user.id}",
        json={"plan": "RESELLER", "status": "ACTIVE", "reason": REASON},
        headers=headers,
    )

    assert response.status_code == 200
    assert response.json()["plan"] == "RESELLER"
    assert response.json()["updated_by_id"] == str(admin.id)
    assert (await _reload(db_session, user)).plan == Plan.RESELLER

    history = await client.get(f"/v1/admin/subscriptions/{user.id}", headers=headers)
    assert [row["status"] for row in history.json()] == ["ACTIVE"]


@pytest.mark.asyncio
async def test_maintenance_blocks_endpoint_without_consuming(client: AsyncClient, db_session: AsyncSession) -> None:
    """Test that an endpoint under maintenance rejects calls before the quota."""
    admin = await create_admin(db_session)
    user = await create_user(db_session)
    api_key = await create_api_key(db_session, user)
    headers = auth_headers(admin)

    catalog = await client.get("/v1/admin/apis", headers=headers)
    endpoint = next(item for item in catalog.json() if item["slug"] == "country-time")
    assert endpoint["status"] == "ACTIVE"

    patched = await client.patch(
        f"/v1/admin/apis/{endpoint['id']}", json={"status": "MAINTENANCE", "reason": REASON}, headers=headers
    )
    assert patched.json()["maintenance_note"] == "Maintenance in progress."

    gated = await client.get("/api/country-time", params={"country": "id", "apikey": api_key.key})
    assert gated.status_code == 503
    assert gated.json()["message"] == "Endpoint is under maintenance."
    assert await QuotaLedger(db_session).get_used(api_key.id, utc_day(utcnow())) == 0

    public = await client.get("/api/apis/status")
    (entry,) = [item for item in public.json() if item["slug"] == "country-time"]
    assert entry["status"] == "MAINTENANCE"
    assert entry["maintenance_note"] == "Maintenance in progress."
