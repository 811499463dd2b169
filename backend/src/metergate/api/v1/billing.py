"""Self-service billing endpoints for the signed-in owner."""
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from metergate.api.deps import get_current_user, get_db
from metergate.integrations.proof_storage import PaymentProofStorage
from metergate.models.user import User
from metergate.schemas.invoice import CheckoutRequest, Invoice
from metergate.services.checkout_service import CheckoutService

router = APIRouter(prefix="/billing", tags=["Billing"])


def get_proof_storage() -> PaymentProofStorage:
    """Payment proof storage dependency."""
    return PaymentProofStorage()


@router.get("/invoices", response_model=list[Invoice])
async def list_own_invoices(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[Invoice]:
    """The caller's 30 most recent invoices, newest first."""
    return await CheckoutService(db).list_recent(current_user)


@router.post("/invoices", response_model=Invoice, status_code=status.HTTP_201_CREATED)
async def request_plan_invoice(
    checkout: CheckoutRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Invoice:
    """
    Request an UNPAID invoice for a plan upgrade.

    - **plan**: PAID or RESELLER; must rank above the current plan

    A pending invoice for the same plan from the last 24 hours is returned
    in a 409 response instead of creating a duplicate.
    """
    invoice = await CheckoutService(db).request_plan(current_user, checkout.plan)
    await db.commit()
    return invoice


@router.post("/invoices/{invoice_id}/submit", response_model=Invoice)
async def submit_payment_proof(
    invoice_id: UUID,
    file: UploadFile = File(..., description="JPEG, PNG or WebP image, at most 4 MB"),
    payment_method: str | None = Form(default=None, max_length=80),
    note: str | None = Form(default=None, max_length=500),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    storage: PaymentProofStorage = Depends(get_proof_storage),
) -> Invoice:
    """
    Upload a payment proof for an UNPAID invoice.

    The invoice stays UNPAID until an admin approves it. A previously
    uploaded proof is replaced; the new file is dropped if the commit fails.
    """
    content = await file.read()
    service = CheckoutService(db, storage)
    invoice, stale_url = await service.submit_proof(
        current_user,
        invoice_id,
        content,
        file.content_type,
        file.filename,
        payment_method=payment_method,
        note=note,
    )
    saved_url = invoice.payment_proof_url
    try:
        await db.commit()
    except SQLAlchemyError:
        await storage.delete(saved_url)
        raise
    await storage.delete(stale_url)
    return invoice


@router.post("/invoices/{invoice_id}/cancel", response_model=Invoice)
async def cancel_own_invoice(
    invoice_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    storage: PaymentProofStorage = Depends(get_proof_storage),
) -> Invoice:
    """Cancel an UNPAID invoice. Its uploaded proof is removed."""
    invoice, stale_url = await CheckoutService(db, storage).cancel(current_user, invoice_id)
    await db.commit()
    await storage.delete(stale_url)
    return invoice
