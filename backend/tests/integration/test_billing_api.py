"""Integration tests for self-service plan purchases."""
from pathlib import Path
from typing import AsyncGenerator
from uuid import UUID

import pytest
from httpx import AsyncClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from metergate.api.deps import get_db
from metergate.integrations.proof_storage import PaymentProofStorage
from metergate.main import app
from metergate.models.enums import Plan
from metergate.models.invoice import BillingInvoice
from utils.factories import activate_plan, auth_headers, create_user

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


class FailingCommitSession(AsyncSession):
    async def commit(self) -> None:
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))


def _stored_path(storage: PaymentProofStorage, url: str) -> Path:
    return storage.base_dir / url.rsplit("/", 1)[-1]


async def _open_invoice(client: AsyncClient, headers: dict[str, str]) -> dict:
    response = await client.post("/v1/billing/invoices", json={"plan": "PAID"}, headers=headers)
    assert response.status_code == 201
    return response.json()


@pytest.mark.asyncio
async def test_request_plan_opens_unpaid_invoice(client: AsyncClient, db_session: AsyncSession) -> None:
    """Test that requesting a plan creates an UNPAID invoice at the plan price."""
    user = await create_user(db_session)

    invoice = await _open_invoice(client, auth_headers(user))

    assert invoice["status"] == "UNPAID"
    assert invoice["plan"] == "PAID"
    assert invoice["amount"] == 5000
    assert invoice["currency"] == "IDR"
    assert invoice["notes"] == "Awaiting payment proof upload."
    assert invoice["created_by_id"] == str(user.id)

    listing = await client.get("/v1/billing/invoices", headers=auth_headers(user))
    assert [item["id"] for item in listing.json()] == [invoice["id"]]


@pytest.mark.asyncio
async def test_pending_invoice_returned_on_repeat(client: AsyncClient, db_session: AsyncSession) -> None:
    """Test that a second request inside the pending window returns the open invoice."""
    user = await create_user(db_session)
    headers = auth_headers(user)
    invoice = await _open_invoice(client, headers)

    response = await client.post("/v1/billing/invoices", json={"plan": "PAID"}, headers=headers)

    assert response.status_code == 409
    body = response.json()
    assert body["message"] == "You already have a pending invoice for this plan."
    assert body["invoice"]["id"] == invoice["id"]


@pytest.mark.asyncio
async def test_free_plan_cannot_be_purchased(client: AsyncClient, db_session: AsyncSession) -> None:
    """Test that only PAID and RESELLER are purchasable."""
    user = await create_user(db_session)

    response = await client.post("/v1/billing/invoices", json={"plan": "FREE"}, headers=auth_headers(user))

    assert response.status_code == 400
    assert response.json()["message"] == "Only PAID or RESELLER plans can be purchased."


@pytest.mark.asyncio
async def test_owned_plan_cannot_be_purchased(client: AsyncClient, db_session: AsyncSession) -> None:
    """Test that a user cannot buy a plan they already hold."""
    user = await create_user(db_session)
    await activate_plan(db_session, user, Plan.PAID)

    response = await client.post("/v1/billing/invoices", json={"plan": "PAID"}, headers=auth_headers(user))

    assert response.status_code == 400
    assert response.json()["message"] == "Your current plan already includes PAID."


@pytest.mark.asyncio
async def test_submit_proof_stores_file(
    client: AsyncClient, db_session: AsyncSession, proof_storage: PaymentProofStorage
) -> None:
    """Test that a proof upload is stored and linked without changing the status."""
    user = await create_user(db_session)
    headers = auth_headers(user)
    invoice = await _open_invoice(client, headers)

    response = await client.post(
        f"/v1/billing/invoices/{invoice['id']}/submit",
        files={"file": ("proof.png", PNG_BYTES, "image/png")},
        data={"payment_method": "BCA transfer", "note": "Paid from savings account"},
        headers=headers,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "UNPAID"
    assert body["payment_method"] == "BCA transfer"
    assert body["payment_proof_url"].startswith("/uploads/payment-proofs/")
    assert body["payment_proof_url"].endswith(".png")
    assert "User note: Paid from savings account" in body["notes"]
    assert _stored_path(proof_storage, body["payment_proof_url"]).read_bytes() == PNG_BYTES


@pytest.mark.asyncio
async def test_resubmit_replaces_previous_file(
    client: AsyncClient, db_session: AsyncSession, proof_storage: PaymentProofStorage
) -> None:
    """Test that a second upload removes the first file."""
    user = await create_user(db_session)
    headers = auth_headers(user)
    invoice = await _open_invoice(client, headers)
    url = f"/v1/billing/invoices/{invoice['id']}/submit"

    first = await client.post(url, files={"file": ("a.png", PNG_BYTES, "image/png")}, headers=headers)
    second = await client.post(url, files={"file": ("b.webp", b"RIFF0000WEBP", "image/webp")}, headers=headers)

    assert second.status_code == 200
    assert second.json()["payment_method"] == "MANUAL_TRANSFER"
    assert not _stored_path(proof_storage, first.json()["payment_proof_url"]).exists()
    assert _stored_path(proof_storage, second.json()["payment_proof_url"]).exists()


@pytest.mark.asyncio
async def test_failed_commit_discards_uploaded_proof(
    client: AsyncClient, db_session: AsyncSession, test_engine: AsyncEngine, proof_storage: PaymentProofStorage
) -> None:
    """Test that a proof file is not left behind when the invoice update cannot be committed."""
    user = await create_user(db_session)
    headers = auth_headers(user)
    invoice = await _open_invoice(client, headers)
    failing_sessions = async_sessionmaker(test_engine, class_=FailingCommitSession, expire_on_commit=False)

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with failing_sessions() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    response = await client.post(
        f"/v1/billing/invoices/{invoice['id']}/submit",
        files={"file": ("proof.png", PNG_BYTES, "image/png")},
        headers=headers,
    )

    assert response.status_code == 500
    assert response.json()["message"] == "Internal server error."
    assert list(proof_storage.base_dir.glob("*")) == []
    stored = await db_session.get(BillingInvoice, UUID(invoice["id"]))
    assert stored.payment_proof_url is None


@pytest.mark.asyncio
async def test_submit_rejects_non_image(client: AsyncClient, db_session: AsyncSession) -> None:
    """Test that only JPEG, PNG and WebP proofs are accepted."""
    user = await create_user(db_session)
    headers = auth_headers(user)
    invoice = await _open_invoice(client, headers)

    response = await client.post(
        f"/v1/billing/invoices/{invoice['id']}/submit",
        files={"file": ("proof.txt", b"hello", "text/plain")},
        headers=headers,
    )

    assert response.status_code == 400
    assert response.json()["message"] == "Payment proof must be a JPG, PNG or WEBP image."


@pytest.mark.asyncio
async def test_cancel_removes_proof(
    client: AsyncClient, db_session: AsyncSession, proof_storage: PaymentProofStorage
) -> None:
    """Test that cancelling withdraws the invoice and deletes its proof."""
    user = await create_user(db_session)
    headers = auth_headers(user)
    invoice = await _open_invoice(client, headers)
    submitted = await client.post(
        f"/v1/billing/invoices/{invoice['id']}/submit",
        files={"file": ("proof.png", PNG_BYTES, "image/png")},
        headers=headers,
    )
    stored = _stored_path(proof_storage, submitted.json()["payment_proof_url"])

    response = await client.post(f"/v1/billing/invoices/{invoice['id']}/cancel", headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "CANCELED"
    assert body["payment_proof_url"] is None
    assert not stored.exists()

    again = await client.post(f"/v1/billing/invoices/{invoice['id']}/cancel", headers=headers)
    assert again.status_code == 400
    assert again.json()["message"] == "Only unpaid invoice can be canceled."


@pytest.mark.asyncio
async def test_cannot_touch_someone_elses_invoice(client: AsyncClient, db_session: AsyncSession) -> None:
    """Test that another user's invoice is reported as not found."""
    owner = await create_user(db_session)
    intruder = await create_user(db_session)
    invoice = await _open_invoice(client, auth_headers(owner))

    response = await client.post(f"/v1/billing/invoices/{invoice['id']}/cancel", headers=auth_headers(intruder))

    assert response.status_code == 404
    assert response.json()["message"] == "Invoice not found."
