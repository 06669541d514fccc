"""Append-only subscription change ledger.

``record`` adds the entry to the caller's transaction and flushes it. It never
commits, so the entry is saved together with the state change it describes,
or not at all.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.subscription import ChangeType, SubscriptionChange
from app.schemas.changes import ChangeDetails, SubscriptionChangeOut, change_details_adapter
from app.services.pricing import round_money

logger = logging.getLogger(__name__)


def _dump(value) -> Optional[dict]:
    if value is None:
        return None
    return value.model_dump(mode="json")


async def record(
    db: AsyncSession,
    subscription_id: UUID,
    change: ChangeDetails,
    amount_adjustment: Decimal = Decimal("0"),
    prorated_amount: Decimal = Decimal("0"),
    notes: Optional[str] = None,
) -> SubscriptionChange:
    entry = SubscriptionChange(
        subscription_id=subscription_id,
        change_type=ChangeType(change.change_type),
        previous_value=_dump(change.previous_value),
        new_value=_dump(change.new_value),
        amount_adjustment=round_money(amount_adjustment),
        prorated_amount=round_money(prorated_amount),
        notes=notes,
        created_at=datetime.utcnow(),
    )
    db.add(entry)
    await db.flush()

    logger.info(
        "Recorded %s on subscription %s (adjustment %s)",
        entry.change_type.value, subscription_id, entry.amount_adjustment,
    )
    return entry


async def get_history(db: AsyncSession, subscription_id: UUID) -> List[SubscriptionChange]:
    """All changes of a subscription, newest first. Unknown ids have no history."""
    result = await db.execute(
        select(SubscriptionChange)
        .where(SubscriptionChange.subscription_id == subscription_id)
        .order_by(SubscriptionChange.created_at.desc(), SubscriptionChange.id)
    )
    return list(result.scalars().all())


def to_change_out(entry: SubscriptionChange) -> SubscriptionChangeOut:
    details = change_details_adapter.validate_python({
        "change_type": entry.change_type.value,
        "previous_value": entry.previous_value,
        "new_value": entry.new_value,
    })
    return SubscriptionChangeOut(
        id=str(entry.id),
        subscription_id=str(entry.subscription_id),
        change_type=entry.change_type.value,
        details=details,
        amount_adjustment=entry.amount_adjustment,
        prorated_amount=entry.prorated_amount,
        notes=entry.notes,
        created_at=entry.created_at,
    )
