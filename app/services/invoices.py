"""Invoice generation and payment.

An invoice snapshots the subscription's monthly total for a billing period:
one tier_base line, one line per active feature at its locked price and one
additional_menu line when the restaurant is over its menu allowance. Tax is
carried on the invoice itself, so sum(line totals) + tax == total.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.config import settings
from app.core.database import unit_of_work
from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.models.invoice import (
    Invoice, InvoiceLineItem, InvoiceNumberSequence, InvoiceStatus, LineItemType, PAYABLE_STATUSES,
)
from app.models.tier import Tier
from app.services.pricing import compute_breakdown, round_money
from app.services.queries import (
    count_menus, get_active_features, get_subscription_or_404, lock_subscription,
)

logger = logging.getLogger(__name__)


def _upsert_for(db: AsyncSession):
    """INSERT .. ON CONFLICT builder matching the session's dialect."""
    if db.get_bind().dialect.name == "postgresql":
        return pg_insert
    return sqlite_insert


async def _next_invoice_number(db: AsyncSession, now: datetime) -> str:
    """Allocate the next number of the year's sequence, e.g. INV-2025-000042.

    A single upsert creates the year's counter or bumps it, so two first
    invoices of a year can't both try to insert the counter row.
    """
    year = now.year
    insert = _upsert_for(db)
    stmt = insert(InvoiceNumberSequence).values(year=year, last_value=1)
    stmt = stmt.on_conflict_do_update(
        index_elements=[InvoiceNumberSequence.year],
        set_={"last_value": InvoiceNumberSequence.last_value + 1},
    ).returning(InvoiceNumberSequence.last_value)
    value = (await db.execute(stmt)).scalar_one()

    return f"{settings.INVOICE_NUMBER_PREFIX}-{year}-{value:06d}"


async def _load_invoice(db: AsyncSession, invoice_id: UUID) -> Optional[Invoice]:
    result = await db.execute(
        select(Invoice)
        .options(selectinload(Invoice.line_items))
        .where(Invoice.id == invoice_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def generate_invoice(
    db: AsyncSession,
    subscription_id: UUID,
    period_start: datetime,
    period_end: datetime,
    now: Optional[datetime] = None,
) -> Invoice:
    if period_end <= period_start:
        raise ValidationError("period_end must be after period_start")
    now = now or datetime.utcnow()

    async with unit_of_work(db, "invoice generation"):
        subscription = await lock_subscription(db, subscription_id)

        duplicate = (await db.execute(
            select(Invoice.id, Invoice.invoice_number).where(
                Invoice.subscription_id == subscription_id,
                Invoice.period_start == period_start,
                Invoice.period_end == period_end,
            )
        )).first()
        if duplicate is not None:
            raise ConflictError(
                f"Invoice {duplicate.invoice_number} already covers this period",
                {"invoice_id": str(duplicate.id)},
            )

        tier = await db.get(Tier, subscription.tier_id)
        features = await get_active_features(db, subscription_id)
        menus = await count_menus(db, subscription.restaurant_id)
        breakdown = compute_breakdown(tier, features, menus)

        invoice = Invoice(
            subscription_id=subscription_id,
            invoice_number=await _next_invoice_number(db, now),
            period_start=period_start,
            period_end=period_end,
            subtotal=breakdown.subtotal,
            tax=breakdown.tax,
            total=breakdown.total,
            status=InvoiceStatus.PENDING,
            due_date=period_end + timedelta(days=settings.INVOICE_GRACE_PERIOD_DAYS),
            created_at=now,
        )

        items = [InvoiceLineItem(
            description=f"{tier.name} plan",
            item_type=LineItemType.TIER_BASE,
            quantity=1,
            unit_price=breakdown.tier_base_price,
            total=breakdown.tier_base_price,
            item_metadata={"tier_id": tier.id},
        )]
        for purchase, feature in features:
            price = round_money(purchase.price_at_purchase)
            items.append(InvoiceLineItem(
                description=feature.name,
                item_type=LineItemType.FEATURE,
                quantity=1,
                unit_price=price,
                total=price,
                item_metadata={
                    "feature_id": feature.id,
                    "feature_key": feature.key,
                    "subscription_feature_id": str(purchase.id),
                },
            ))
        if breakdown.additional_menus > 0:
            items.append(InvoiceLineItem(
                description=f"Additional menus ({breakdown.additional_menus})",
                item_type=LineItemType.ADDITIONAL_MENU,
                quantity=breakdown.additional_menus,
                unit_price=round_money(tier.price_per_additional_menu),
                total=breakdown.additional_menus_cost,
                item_metadata={"menu_count": menus, "max_menus": tier.max_menus},
            ))

        for position, item in enumerate(items):
            item.position = position
            invoice.line_items.append(item)

        db.add(invoice)
        await db.flush()

    logger.info(
        "Generated invoice %s for subscription %s: total %s",
        invoice.invoice_number, subscription_id, invoice.total,
    )
    return await _load_invoice(db, invoice.id)


async def mark_as_paid(
    db: AsyncSession,
    invoice_id: UUID,
    payment_method: str,
    metadata: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> Invoice:
    """pending/overdue -> paid. A second call is a conflict, never a re-stamp."""
    now = now or datetime.utcnow()

    async with unit_of_work(db, "invoice payment"):
        result = await db.execute(
            update(Invoice)
            .where(Invoice.id == invoice_id, Invoice.status.in_(PAYABLE_STATUSES))
            .values(
                status=InvoiceStatus.PAID,
                paid_at=now,
                payment_method=payment_method,
                payment_metadata=metadata,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            invoice = await _load_invoice(db, invoice_id)
            if invoice is None:
                raise NotFoundError(f"Invoice {invoice_id} not found")
            raise ConflictError(
                f"Invoice {invoice.invoice_number} is {invoice.status.value} and cannot be paid",
                {"status": invoice.status.value},
            )

    logger.info("Invoice %s paid via %s", invoice_id, payment_method)
    return await _load_invoice(db, invoice_id)


async def mark_overdue(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """Flag pending invoices past their due date. Returns how many changed."""
    now = now or datetime.utcnow()

    async with unit_of_work(db, "overdue sweep"):
        result = await db.execute(
            update(Invoice)
            .where(Invoice.status == InvoiceStatus.PENDING, Invoice.due_date < now)
            .values(status=InvoiceStatus.OVERDUE)
            .execution_options(synchronize_session=False)
        )
        updated = result.rowcount

    if updated:
        logger.info("Marked %d invoice(s) overdue", updated)
    return updated


async def get_invoice(db: AsyncSession, invoice_id: UUID) -> Invoice:
    invoice = await _load_invoice(db, invoice_id)
    if invoice is None:
        raise NotFoundError(f"Invoice {invoice_id} not found")
    return invoice


async def list_subscription_invoices(db: AsyncSession, subscription_id: UUID) -> List[Invoice]:
    """Invoices of a subscription, latest period first."""
    await get_subscription_or_404(db, subscription_id)
    result = await db.execute(
        select(Invoice)
        .options(selectinload(Invoice.line_items))
        .where(Invoice.subscription_id == subscription_id)
        .order_by(Invoice.period_start.desc())
    )
    return list(result.scalars().all())
