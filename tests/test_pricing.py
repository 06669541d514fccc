"""Tests for the pricing engine: discounts, rounding, proration and totals."""

import pytest
from datetime import datetime
from decimal import Decimal

from app.core.exceptions import ValidationError
from app.models.feature import Feature
from app.models.subscription import BillingCycle, SubscriptionFeature
from app.models.tier import Tier, UNLIMITED
from app.services.pricing import (
    billing_date, compute_breakdown, discounted_price, next_billing_date, prorate, remaining_fraction,
    round_money,
)


def _tier(base="29.99", max_menus=5, extra="4.99"):
    return Tier(
        name="pro",
        base_price_monthly=Decimal(base),
        max_menus=max_menus,
        price_per_additional_menu=Decimal(extra),
    )


def _purchase(name, price):
    return SubscriptionFeature(price_at_purchase=Decimal(price)), Feature(name=name, key=name.lower())


def test_discounted_price_applies_tier_discount():
    """9.99 at 30% off is 6.993, stored as 6.99."""
    assert discounted_price(Decimal("9.99"), Decimal("30")) == Decimal("6.99")


def test_discounted_price_bounds():
    assert discounted_price(Decimal("10"), 0) == Decimal("10.00")
    assert discounted_price(Decimal("10"), 100) == Decimal("0.00")


@pytest.mark.parametrize("base,discount", [("-1", "0"), ("10", "-5"), ("10", "100.01")])
def test_discounted_price_rejects_bad_input(base, discount):
    with pytest.raises(ValidationError):
        discounted_price(Decimal(base), Decimal(discount))


def test_round_money_is_half_up():
    """Half-up, not banker's rounding and not float rounding."""
    assert round_money(Decimal("2.675")) == Decimal("2.68")
    assert round_money(Decimal("0.125")) == Decimal("0.13")
    assert round_money(2.675) == Decimal("2.68")


def test_next_billing_date_uses_calendar_months():
    assert next_billing_date(datetime(2025, 1, 31), BillingCycle.MONTHLY) == datetime(2025, 2, 28)
    assert next_billing_date(datetime(2024, 2, 29), BillingCycle.ANNUAL) == datetime(2025, 2, 28)


def test_billing_date_keeps_month_end_anniversary():
    """Counting from the anchor: a Jan 31 start bills on Feb 28, Mar 31, Apr 30."""
    start = datetime(2025, 1, 31, 12)
    dates = [billing_date(start, BillingCycle.MONTHLY, n) for n in range(1, 4)]
    assert dates == [datetime(2025, 2, 28, 12), datetime(2025, 3, 31, 12), datetime(2025, 4, 30, 12)]

    leap = datetime(2024, 2, 29)
    assert billing_date(leap, BillingCycle.ANNUAL, 4) == datetime(2028, 2, 29)


def test_remaining_fraction_actual_days():
    """Halfway through June (30 days) leaves exactly half the cycle."""
    fraction = remaining_fraction(
        BillingCycle.MONTHLY, datetime(2025, 6, 1, 12), datetime(2025, 7, 1, 12), datetime(2025, 6, 16, 9)
    )
    assert fraction == Decimal("0.5")


def test_remaining_fraction_leap_february():
    fraction = remaining_fraction(
        BillingCycle.MONTHLY, datetime(2024, 2, 1), datetime(2024, 3, 1), datetime(2024, 2, 15), "actual"
    )
    assert fraction == Decimal(15) / Decimal(29)


def test_remaining_fraction_short_cycle_after_month_end_start():
    """Jan 31 -> Feb 28 is a 28-day cycle; its first day has the whole cycle left."""
    start, end = datetime(2025, 1, 31, 12), datetime(2025, 2, 28, 12)
    assert remaining_fraction(BillingCycle.MONTHLY, start, end, start, "actual") == Decimal("1")
    assert remaining_fraction(BillingCycle.MONTHLY, start, end, datetime(2025, 2, 14), "actual") == Decimal("0.5")


def test_remaining_fraction_30_360():
    fraction = remaining_fraction(
        BillingCycle.MONTHLY, datetime(2025, 2, 1), datetime(2025, 3, 1), datetime(2025, 2, 15), "30/360"
    )
    assert fraction == Decimal(14) / Decimal(30)

    annual = remaining_fraction(
        BillingCycle.ANNUAL, datetime(2025, 6, 1), datetime(2026, 6, 1), datetime(2025, 12, 1), "30/360"
    )
    assert annual == Decimal(182) / Decimal(360)


def test_remaining_fraction_is_clamped():
    start, end = datetime(2025, 6, 1), datetime(2025, 7, 1)
    assert remaining_fraction(BillingCycle.MONTHLY, start, end, datetime(2025, 7, 10)) == Decimal("0")
    assert remaining_fraction(BillingCycle.MONTHLY, start, end, datetime(2025, 5, 1)) == Decimal("1")
    assert remaining_fraction(BillingCycle.MONTHLY, start, None, datetime(2025, 5, 1)) == Decimal("0")


def test_prorate_rounds_only_the_result():
    assert prorate(Decimal("20.00"), Decimal("0.5")) == Decimal("10.00")
    # 6.99 * 0.5 = 3.495 -> 3.50
    assert prorate(Decimal("6.99"), Decimal("0.5")) == Decimal("3.50")


def test_breakdown_with_extra_menus_and_tax():
    breakdown = compute_breakdown(
        _tier(),
        [_purchase("Advanced Analytics", "6.99"), _purchase("PDF Export", "0")],
        menu_count=7,
        tax_rate=Decimal("0.10"),
    )

    assert breakdown.tier_base_price == Decimal("29.99")
    assert breakdown.features_total == Decimal("6.99")
    assert breakdown.additional_menus == 2
    assert breakdown.additional_menus_cost == Decimal("9.98")
    assert breakdown.subtotal == Decimal("46.96")
    assert breakdown.tax == Decimal("4.70")
    assert breakdown.total == Decimal("51.66")
    assert breakdown.subtotal + breakdown.tax == breakdown.total
    assert [d["feature_name"] for d in breakdown.features_detail] == ["Advanced Analytics", "PDF Export"]


def test_breakdown_within_allowance_has_no_menu_cost():
    breakdown = compute_breakdown(_tier(), [_purchase("Advanced Analytics", "6.99")], menu_count=5, tax_rate=0)
    assert breakdown.additional_menus_cost == Decimal("0.00")
    assert breakdown.total == Decimal("36.98")


def test_breakdown_unlimited_tier_never_charges_menus():
    breakdown = compute_breakdown(_tier(base="79.99", max_menus=UNLIMITED), [], menu_count=250, tax_rate=0)
    assert breakdown.additional_menus == 0
    assert breakdown.total == Decimal("79.99")
