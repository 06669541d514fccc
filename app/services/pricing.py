"""Pricing engine: tier-discounted feature prices, monthly totals and proration.

All arithmetic is done on Decimal. Amounts are only rounded (half-up, 2 dp)
when they are stored or returned, never in intermediate steps.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union
from uuid import UUID

from dateutil.relativedelta import relativedelta
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import ValidationError
from app.models.feature import Feature
from app.models.subscription import BillingCycle, Subscription, SubscriptionFeature
from app.models.tier import Tier
from app.services.queries import count_menus, get_active_features, get_subscription_or_404

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

Number = Union[Decimal, int, float, str]


def to_decimal(value: Optional[Number]) -> Decimal:
    """Coerce a DB/JSON number to Decimal without float artefacts."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    try:
        return Decimal(value)
    except Exception as e:
        raise ValidationError(f"Invalid monetary amount: {value!r}") from e


def round_money(amount: Number) -> Decimal:
    return to_decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def discounted_price(base_price: Number, discount_percentage: Number) -> Decimal:
    """final_price = base_price * (1 - discount/100), rounded, never below 0."""
    base = to_decimal(base_price)
    discount = to_decimal(discount_percentage)
    if base < 0:
        raise ValidationError(f"Base price must not be negative (got {base})")
    if discount < 0 or discount > 100:
        raise ValidationError(f"Discount percentage must be between 0 and 100 (got {discount})")
    price = base * (1 - discount / 100)
    return max(round_money(price), ZERO)


# ---------------------------------------------------------------------------
# Billing cycles and proration
# ---------------------------------------------------------------------------

def cycle_length(billing_cycle: BillingCycle) -> relativedelta:
    if BillingCycle(billing_cycle) == BillingCycle.ANNUAL:
        return relativedelta(years=1)
    return relativedelta(months=1)


def billing_date(anchor: datetime, billing_cycle: BillingCycle, periods: int = 1) -> datetime:
    """The date ``periods`` whole cycles after ``anchor``.

    Always counted from the anchor, never chained from a previous result:
    Jan 31 + 1 month is Feb 28, but Jan 31 + 2 months is still Mar 31.
    """
    return anchor + cycle_length(billing_cycle) * periods


def next_billing_date(start: datetime, billing_cycle: BillingCycle) -> datetime:
    return billing_date(start, billing_cycle, 1)


def cycle_bounds(subscription: Subscription) -> Tuple[datetime, datetime]:
    """(start, end) of the cycle the subscription is currently in."""
    start = subscription.current_period_start
    if start is None:
        start = billing_date(
            subscription.started_at, subscription.billing_cycle, subscription.renewal_count or 0
        )
    return start, subscription.next_billing_date


def remaining_fraction(
    billing_cycle: BillingCycle,
    cycle_start: Optional[datetime],
    cycle_end: Optional[datetime],
    now: datetime,
    day_count: Optional[str] = None,
) -> Decimal:
    """days_remaining / days_in_cycle, counted in whole calendar days.

    ``day_count`` is "actual" (the real length of this cycle, from its stored
    start to its end) or "30/360" (every month 30 days, every year 360).
    """
    if cycle_start is None or cycle_end is None:
        return Decimal("0")
    day_count = day_count or settings.PRORATION_DAY_COUNT

    if day_count == "30/360":
        days_in_cycle = 360 if BillingCycle(billing_cycle) == BillingCycle.ANNUAL else 30
    else:
        days_in_cycle = (cycle_end.date() - cycle_start.date()).days
    if days_in_cycle <= 0:
        return Decimal("0")

    days_remaining = (cycle_end.date() - now.date()).days
    days_remaining = max(0, min(days_remaining, days_in_cycle))
    return Decimal(days_remaining) / Decimal(days_in_cycle)


def prorate(amount: Number, fraction: Decimal) -> Decimal:
    return round_money(to_decimal(amount) * fraction)


def subscription_fraction(subscription: Subscription, now: datetime) -> Decimal:
    start, end = cycle_bounds(subscription)
    return remaining_fraction(subscription.billing_cycle, start, end, now)


# ---------------------------------------------------------------------------
# Monthly totals
# ---------------------------------------------------------------------------

@dataclass
class PricingBreakdown:
    tier_base_price: Decimal
    features_total: Decimal
    additional_menus: int
    additional_menus_cost: Decimal
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    features_detail: List[Dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "tier_base_price": self.tier_base_price,
            "features_total": self.features_total,
            "additional_menus_cost": self.additional_menus_cost,
            "subtotal": self.subtotal,
            "tax": self.tax,
            "total": self.total,
            "features_detail": self.features_detail,
        }


def additional_menus(tier: Tier, menu_count: int) -> int:
    """Menus above the tier allowance; always 0 on unlimited tiers."""
    if tier.is_unlimited:
        return 0
    return max(0, menu_count - tier.max_menus)


def compute_breakdown(
    tier: Tier,
    active_features: Iterable[Tuple[SubscriptionFeature, Feature]],
    menu_count: int,
    tax_rate: Optional[Number] = None,
) -> PricingBreakdown:
    """Monthly total for a tier, a set of active features and a menu count."""
    rate = to_decimal(settings.BILLING_TAX_RATE if tax_rate is None else tax_rate)

    tier_base = to_decimal(tier.base_price_monthly)
    features_total = Decimal("0")
    detail = []
    for purchased, feature in active_features:
        price = to_decimal(purchased.price_at_purchase)
        features_total += price
        detail.append({"feature_name": feature.name, "price": round_money(price)})

    extra = additional_menus(tier, menu_count)
    extra_cost = extra * to_decimal(tier.price_per_additional_menu)

    subtotal = tier_base + features_total + extra_cost
    tax = subtotal * rate

    return PricingBreakdown(
        tier_base_price=round_money(tier_base),
        features_total=round_money(features_total),
        additional_menus=extra,
        additional_menus_cost=round_money(extra_cost),
        subtotal=round_money(subtotal),
        tax=round_money(tax),
        total=round_money(subtotal + tax),
        features_detail=detail,
    )


async def compute_monthly_total(db: AsyncSession, subscription: Subscription) -> PricingBreakdown:
    tier = await db.get(Tier, subscription.tier_id)
    features = await get_active_features(db, subscription.id)
    menus = await count_menus(db, subscription.restaurant_id)
    return compute_breakdown(tier, features, menus)


async def get_pricing_breakdown(db: AsyncSession, subscription_id: UUID) -> PricingBreakdown:
    subscription = await get_subscription_or_404(db, subscription_id)
    return await compute_monthly_total(db, subscription)


async def get_limits(db: AsyncSession, subscription_id: UUID) -> Dict[str, Any]:
    """Menu allowance and capability flags granted by the current tier."""
    subscription = await get_subscription_or_404(db, subscription_id)
    tier = await db.get(Tier, subscription.tier_id)
    current_menus = await count_menus(db, subscription.restaurant_id)

    return {
        "max_menus": tier.max_menus,
        "current_menus": current_menus,
        "can_create_more": tier.is_unlimited or current_menus < tier.max_menus,
        "additional_menu_price": round_money(tier.price_per_additional_menu or 0),
        "allows_pdf": tier.allows_pdf,
        "allows_custom_fonts": tier.allows_custom_fonts,
        "allows_images": tier.allows_images,
        "allows_multiple_locations": tier.allows_multiple_locations,
    }
