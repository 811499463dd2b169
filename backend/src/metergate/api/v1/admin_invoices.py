"""Admin invoice endpoints: manual review, backfill and correction."""
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from metergate.api.deps import admin_rate_limit, get_current_user, get_db
from metergate.auth.rbac import require_roles
from metergate.models.enums import InvoiceStatus, UserRole
from metergate.models.user import User
from metergate.schemas.invoice import Invoice, InvoiceCreate, InvoiceList, InvoiceUpdate
from metergate.services.invoice_service import InvoiceService, invoice_snapshot
from metergate.utils.audit import log_admin_action

router = APIRouter(prefix="/admin/billing/invoices", tags=["Admin"])


@router.get("", response_model=InvoiceList)
@require_roles(UserRole.SUPERADMIN)
async def list_invoices(
    user_id: UUID | None = Query(default=None, description="Filter by user ID"),
    status: InvoiceStatus | None = Query(default=None, description="Filter by status"),
    page: int = Query(default=1, ge=1, description="Page number (1-indexed)"),
    page_size: int = Query(default=50, ge=1, le=200, description="Items per page (max 200)"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> InvoiceList:
    """
    List invoices with pagination and filtering.

    - **user_id**: Invoice owner (optional)
    - **status**: UNPAID, PAID, EXPIRED or CANCELED (optional)

    Returns invoices ordered by creation date (newest first).
    """
    invoices, total = await InvoiceService(db).list_invoices(
        user_id=user_id,
        status=status,
        page=page,
        page_size=page_size,
    )
    return InvoiceList(items=invoices, total=total, page=page, page_size=page_size)


@router.get("/{invoice_id}", response_model=Invoice)
@require_roles(UserRole.SUPERADMIN)
async def get_invoice(
    invoice_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Invoice:
    """Get invoice by ID."""
    return await InvoiceService(db).get_invoice(invoice_id)


@router.post(
    "",
    response_model=Invoice,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(admin_rate_limit("admin-billing-invoice-create", 15, "Too many invoice actions."))],
)
@require_roles(UserRole.SUPERADMIN)
async def create_invoice(
    invoice_data: InvoiceCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Invoice:
    """
    Create an invoice for any user.

    Creating with **status** PAID activates the plan immediately, exactly as
    a later UNPAID -> PAID approval would.
    """
    invoice = await InvoiceService(db).create_invoice(invoice_data, actor_id=current_user.id)
    await log_admin_action(
        db,
        actor_id=current_user.id,
        action="invoice.create",
        target_type="invoice",
        target_id=invoice.id,
        reason=invoice_data.reason,
        after=invoice_snapshot(invoice),
        request=request,
    )
    await db.commit()
    return invoice


@router.patch(
    "/{invoice_id}",
    response_model=Invoice,
    dependencies=[Depends(admin_rate_limit("admin-billing-invoice-patch", 30, "Too many invoice updates."))],
)
@require_roles(UserRole.SUPERADMIN)
async def update_invoice(
    invoice_id: UUID,
    changes: InvoiceUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Invoice:
    """
    Patch invoice fields and/or move it through its lifecycle.

    **Transitions**:
    - UNPAID -> PAID activates a subscription for the invoice's plan and period
    - UNPAID/PAID -> EXPIRED or CANCELED retires the user's active subscription
    - EXPIRED and CANCELED are final

    Editing plan or period of a PAID invoice updates the subscription it activated.
    """
    service = InvoiceService(db)
    before = invoice_snapshot(await service.get_invoice(invoice_id))
    invoice = await service.update_invoice(invoice_id, changes, actor_id=current_user.id)
    await log_admin_action(
        db,
        actor_id=current_user.id,
        action="invoice.update",
        target_type="invoice",
        target_id=invoice.id,
        reason=changes.reason,
        before=before,
        after=invoice_snapshot(invoice),
        request=request,
    )
    await db.commit()
    return invoice
