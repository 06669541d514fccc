"""Invoice endpoints addressed by invoice id."""

import logging
from uuid import UUID
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.dependencies import authorize_subscription, get_current_user, require_admin
from app.models.user import UserProfile
from app.schemas.invoice import InvoiceOut, MarkInvoicePaidRequest, MarkOverdueOut
from app.services import invoices

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/invoices/mark-overdue", response_model=MarkOverdueOut)
async def mark_overdue(
    admin: UserProfile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Flag every pending invoice past its due date as overdue."""
    updated = await invoices.mark_overdue(db)
    logger.info("Admin %s ran the overdue sweep: %d updated", admin.id, updated)
    return MarkOverdueOut(updated=updated)


@router.get("/invoices/{invoice_id}", response_model=InvoiceOut)
async def get_invoice(
    invoice_id: UUID,
    current_user: UserProfile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    invoice = await invoices.get_invoice(db, invoice_id)
    await authorize_subscription(db, current_user, invoice.subscription_id)
    return invoice


@router.post("/invoices/{invoice_id}/pay", response_model=InvoiceOut)
async def pay_invoice(
    invoice_id: UUID,
    body: MarkInvoicePaidRequest,
    admin: UserProfile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Record payment of a pending or overdue invoice."""
    return await invoices.mark_as_paid(db, invoice_id, body.payment_method, body.metadata)
