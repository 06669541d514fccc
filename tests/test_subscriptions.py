"""Tests for the subscription lifecycle services."""

import uuid
import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, patch
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from conftest import CYCLE_START, add_menus
from app.core.exceptions import ConflictError, InvalidStateError, NotFoundError, StorageFailure
from app.models.subscription import ChangeType, Subscription, SubscriptionChange, SubscriptionFeature
from app.services import history, pricing, subscriptions

MID_CYCLE = CYCLE_START + timedelta(days=15)  # Jun 16: half of June left


async def _subscribe(db, restaurant, catalog, tier="pro", **kwargs):
    return await subscriptions.create_subscription(
        db, restaurant.id, catalog["tiers"][tier].id, now=CYCLE_START, **kwargs
    )


async def _active_keys(db, subscription_id):
    rows = await subscriptions.list_active_features(db, subscription_id)
    return {row.feature_key: Decimal(str(row.price)) for row in rows}


async def _changes(db, subscription_id, change_type=None):
    query = select(SubscriptionChange).where(SubscriptionChange.subscription_id == subscription_id)
    if change_type:
        query = query.where(SubscriptionChange.change_type == change_type)
    return (await db.execute(query)).scalars().all()


@pytest.mark.asyncio
async def test_create_attaches_default_features_free(db, catalog, restaurant):
    """Features the tier includes by default are attached at price 0."""
    subscription = await _subscribe(db, restaurant, catalog)

    assert subscription.active is True
    assert subscription.auto_renew is True
    assert subscription.next_billing_date == datetime(2025, 7, 1, 12, 0, 0)

    active = await _active_keys(db, subscription.id)
    assert set(active) == {
        "pdf_export", "custom_fonts", "unlimited_images",
        "basic_analytics", "allergen_info", "nutritional_info",
    }
    assert all(price == Decimal("0") for price in active.values())

    breakdown = await pricing.get_pricing_breakdown(db, subscription.id)
    assert breakdown.total == Decimal("29.99")


@pytest.mark.asyncio
async def test_create_with_extra_features(db, catalog, restaurant):
    """Extras are bought at the tier-discounted price; included ones are skipped."""
    features = catalog["features"]
    subscription = await _subscribe(
        db, restaurant, catalog,
        feature_ids=[features["advanced_analytics"].id, features["pdf_export"].id],
    )

    active = await _active_keys(db, subscription.id)
    assert active["advanced_analytics"] == Decimal("6.99")
    assert active["pdf_export"] == Decimal("0")


@pytest.mark.asyncio
async def test_create_rejects_second_active_subscription(db, catalog, restaurant):
    await _subscribe(db, restaurant, catalog)
    with pytest.raises(ConflictError):
        await _subscribe(db, restaurant, catalog, tier="basic")


@pytest.mark.asyncio
async def test_create_unknown_tier(db, catalog, restaurant):
    with pytest.raises(NotFoundError):
        await subscriptions.create_subscription(db, restaurant.id, 9999, now=CYCLE_START)


@pytest.mark.asyncio
async def test_add_feature_locks_discounted_price(db, catalog, restaurant):
    """Pro + advanced analytics (9.99 at 30% off) totals 29.99 + 6.99 = 36.98."""
    subscription = await _subscribe(db, restaurant, catalog)
    feature = catalog["features"]["advanced_analytics"]

    purchase = await subscriptions.add_feature(db, subscription.id, feature.id, now=CYCLE_START)
    assert purchase.price_at_purchase == Decimal("6.99")

    breakdown = await pricing.get_pricing_breakdown(db, subscription.id)
    assert breakdown.features_total == Decimal("6.99")
    assert breakdown.subtotal == Decimal("36.98")
    assert breakdown.total == Decimal("36.98")

    # Later catalog price changes do not touch what was already sold
    feature.base_price = Decimal("19.99")
    await db.commit()
    breakdown = await pricing.get_pricing_breakdown(db, subscription.id)
    assert breakdown.total == Decimal("36.98")


@pytest.mark.asyncio
async def test_add_feature_prorated(db, catalog, restaurant):
    subscription = await _subscribe(db, restaurant, catalog)
    feature = catalog["features"]["advanced_analytics"]

    purchase = await subscriptions.add_feature(db, subscription.id, feature.id, prorated=True, now=MID_CYCLE)

    assert purchase.price_at_purchase == Decimal("3.50")
    [entry] = [
        e for e in await _changes(db, subscription.id, ChangeType.FEATURE_ADDED)
        if e.new_value["feature_key"] == "advanced_analytics"
    ]
    assert entry.prorated_amount == Decimal("3.50")
    assert entry.new_value["list_price"] == "6.99"
    assert entry.new_value["prorated"] is True


@pytest.mark.asyncio
async def test_add_feature_twice_conflicts(db, catalog, restaurant):
    subscription = await _subscribe(db, restaurant, catalog)
    subscription_id = subscription.id
    feature_id = catalog["features"]["advanced_analytics"].id
    await subscriptions.add_feature(db, subscription_id, feature_id, now=CYCLE_START)

    with pytest.raises(ConflictError):
        await subscriptions.add_feature(db, subscription_id, feature_id, now=CYCLE_START)

    rows = (await db.execute(
        select(SubscriptionFeature).where(
            SubscriptionFeature.subscription_id == subscription_id,
            SubscriptionFeature.feature_id == feature_id,
        )
    )).scalars().all()
    assert len(rows) == 1


@pytest.mark.asyncio
async def test_add_feature_not_offered_by_tier(db, catalog, restaurant):
    subscription = await _subscribe(db, restaurant, catalog, tier="free")
    with pytest.raises(NotFoundError):
        await subscriptions.add_feature(db, subscription.id, catalog["features"]["pos_integration"].id)


@pytest.mark.asyncio
async def test_add_feature_unknown_subscription(db, catalog):
    with pytest.raises(NotFoundError):
        await subscriptions.add_feature(db, uuid.uuid4(), catalog["features"]["pdf_export"].id)


@pytest.mark.asyncio
async def test_remove_feature_refunds_unused_days(db, catalog, restaurant):
    subscription = await _subscribe(db, restaurant, catalog)
    subscription_id = subscription.id
    feature_id = catalog["features"]["advanced_analytics"].id
    await subscriptions.add_feature(db, subscription_id, feature_id, now=CYCLE_START)

    refund = await subscriptions.remove_feature(db, subscription_id, feature_id, now=MID_CYCLE)

    assert refund == Decimal("3.50")
    assert "advanced_analytics" not in await _active_keys(db, subscription_id)
    row = (await db.execute(
        select(SubscriptionFeature).where(SubscriptionFeature.feature_id == feature_id)
    )).scalar_one()
    assert row.is_active is False
    assert row.removed_at == MID_CYCLE

    [entry] = await _changes(db, subscription_id, ChangeType.FEATURE_REMOVED)
    assert entry.amount_adjustment == Decimal("-3.50")
    assert entry.prorated_amount == Decimal("3.50")

    breakdown = await pricing.get_pricing_breakdown(db, subscription_id)
    assert breakdown.total == Decimal("29.99")


@pytest.mark.asyncio
async def test_remove_feature_without_proration(db, catalog, restaurant):
    subscription = await _subscribe(db, restaurant, catalog)
    feature_id = catalog["features"]["advanced_analytics"].id
    await subscriptions.add_feature(db, subscription.id, feature_id, now=CYCLE_START)

    refund = await subscriptions.remove_feature(db, subscription.id, feature_id, prorated=False, now=MID_CYCLE)
    assert refund == Decimal("0.00")


@pytest.mark.asyncio
async def test_remove_inactive_feature_is_invalid(db, catalog, restaurant):
    subscription = await _subscribe(db, restaurant, catalog)
    with pytest.raises(InvalidStateError):
        await subscriptions.remove_feature(db, subscription.id, catalog["features"]["advanced_analytics"].id)


@pytest.mark.asyncio
async def test_upgrade_basic_to_pro(db, catalog, restaurant):
    """One menu on basic is at the limit; after upgrading to pro more can be created."""
    await add_menus(db, restaurant, 1)
    subscription = await _subscribe(db, restaurant, catalog, tier="basic")
    subscription_id = subscription.id

    limits = await pricing.get_limits(db, subscription_id)
    assert limits["max_menus"] == 1
    assert limits["can_create_more"] is False

    adjustment = await subscriptions.change_tier(db, subscription_id, catalog["tiers"]["pro"].id, now=MID_CYCLE)

    # (29.99 - 9.99) for half a cycle
    assert adjustment == Decimal("10.00")
    limits = await pricing.get_limits(db, subscription_id)
    assert limits["max_menus"] == 5
    assert limits["current_menus"] == 1
    assert limits["can_create_more"] is True
    assert limits["allows_pdf"] is True

    active = await _active_keys(db, subscription_id)
    assert {"pdf_export", "custom_fonts", "basic_analytics", "allergen_info"} <= set(active)

    [entry] = await _changes(db, subscription_id, ChangeType.TIER_CHANGE)
    assert entry.previous_value == {"tier_id": catalog["tiers"]["basic"].id, "tier_name": "basic"}
    assert entry.new_value["tier_name"] == "pro"
    assert catalog["features"]["pdf_export"].id in entry.new_value["activated_feature_ids"]


@pytest.mark.asyncio
async def test_downgrade_deactivates_unoffered_features(db, catalog, restaurant):
    subscription = await _subscribe(db, restaurant, catalog)
    subscription_id = subscription.id

    adjustment = await subscriptions.change_tier(
        db, subscription_id, catalog["tiers"]["free"].id, prorated=False, now=MID_CYCLE
    )

    assert adjustment == Decimal("0.00")
    assert set(await _active_keys(db, subscription_id)) == {"basic_analytics", "allergen_info"}
    [entry] = await _changes(db, subscription_id, ChangeType.TIER_CHANGE)
    assert catalog["features"]["pdf_export"].id in entry.new_value["deactivated_feature_ids"]


@pytest.mark.asyncio
async def test_change_to_same_tier_is_invalid(db, catalog, restaurant):
    subscription = await _subscribe(db, restaurant, catalog)
    with pytest.raises(InvalidStateError):
        await subscriptions.change_tier(db, subscription.id, catalog["tiers"]["pro"].id)


@pytest.mark.asyncio
async def test_cancel_keeps_service_until_period_end(db, catalog, restaurant):
    subscription = await _subscribe(db, restaurant, catalog)
    subscription_id = subscription.id
    await subscriptions.add_feature(db, subscription_id, catalog["features"]["advanced_analytics"].id, now=CYCLE_START)

    await subscriptions.cancel_subscription(db, subscription_id, "Closing for the season", now=MID_CYCLE)

    view = await subscriptions.get_subscription_with_pricing(db, subscription_id)
    assert view.active is True
    assert view.auto_renew is False
    assert view.state == "cancelled_pending_expiry"
    assert view.cancellation_reason == "Closing for the season"
    assert view.monthly_total == pytest.approx(36.98)

    with pytest.raises(InvalidStateError):
        await subscriptions.cancel_subscription(db, subscription_id)


@pytest.mark.asyncio
async def test_reactivate_restores_auto_renew(db, catalog, restaurant):
    subscription = await _subscribe(db, restaurant, catalog)
    subscription_id = subscription.id

    with pytest.raises(InvalidStateError):
        await subscriptions.reactivate_subscription(db, subscription_id)

    await subscriptions.cancel_subscription(db, subscription_id, now=MID_CYCLE)
    reactivated = await subscriptions.reactivate_subscription(db, subscription_id)

    assert reactivated.auto_renew is True
    assert reactivated.cancelled_at is None
    assert reactivated.cancellation_reason is None
    [entry] = await _changes(db, subscription_id, ChangeType.RENEWAL)
    assert entry.notes == "Subscription reactivated"
    assert entry.new_value["auto_renew"] is True


@pytest.mark.asyncio
async def test_renewal_advances_cycle(db, catalog, restaurant):
    subscription = await _subscribe(db, restaurant, catalog)
    subscription_id = subscription.id

    with pytest.raises(InvalidStateError):
        await subscriptions.process_renewal(db, subscription_id, now=MID_CYCLE)

    renewed = await subscriptions.process_renewal(db, subscription_id, now=datetime(2025, 7, 1, 12, 0, 0))
    assert renewed.active is True
    assert renewed.next_billing_date == datetime(2025, 8, 1, 12, 0, 0)


@pytest.mark.asyncio
async def test_cancelled_subscription_expires_at_period_end(db, catalog, restaurant):
    subscription = await _subscribe(db, restaurant, catalog)
    subscription_id = subscription.id
    restaurant_id = restaurant.id
    basic_id = catalog["tiers"]["basic"].id
    feature_id = catalog["features"]["advanced_analytics"].id
    await subscriptions.cancel_subscription(db, subscription_id, now=MID_CYCLE)

    expired = await subscriptions.process_renewal(db, subscription_id, now=datetime(2025, 7, 2))

    assert expired.active is False
    assert expired.expires_at == datetime(2025, 7, 1, 12, 0, 0)
    assert expired.state == "inactive"

    with pytest.raises(InvalidStateError):
        await subscriptions.add_feature(db, subscription_id, feature_id)
    with pytest.raises(InvalidStateError):
        await subscriptions.reactivate_subscription(db, subscription_id)

    assert await subscriptions.get_active_subscription(db, restaurant_id) is None
    # The restaurant can subscribe again once the old subscription is gone
    fresh = await subscriptions.create_subscription(
        db, restaurant_id, basic_id, now=datetime(2025, 7, 2)
    )
    listed = await subscriptions.list_restaurant_subscriptions(db, restaurant_id)
    assert [s.subscription_id for s in listed] == [fresh.id, subscription_id]


@pytest.mark.asyncio
async def test_failed_history_write_rolls_back_mutation(db, catalog, restaurant):
    """The purchase and its ledger entry are saved together or not at all."""
    subscription = await _subscribe(db, restaurant, catalog)
    subscription_id = subscription.id
    feature_id = catalog["features"]["advanced_analytics"].id

    with patch("app.services.history.record", new=AsyncMock(side_effect=SQLAlchemyError("ledger down"))):
        with pytest.raises(StorageFailure):
            await subscriptions.add_feature(db, subscription_id, feature_id, now=CYCLE_START)

    rows = (await db.execute(
        select(SubscriptionFeature).where(SubscriptionFeature.feature_id == feature_id)
    )).scalars().all()
    assert rows == []
    assert await _changes(db, subscription_id, ChangeType.FEATURE_ADDED) != []
    assert all(e.new_value["feature_key"] != "advanced_analytics"
               for e in await _changes(db, subscription_id, ChangeType.FEATURE_ADDED))


@pytest.mark.asyncio
async def test_every_mutation_appends_one_history_entry(db, catalog, restaurant):
    subscription = await _subscribe(db, restaurant, catalog, tier="basic")
    subscription_id = subscription.id
    feature_id = catalog["features"]["advanced_analytics"].id

    await subscriptions.add_feature(db, subscription_id, feature_id, now=CYCLE_START)
    await subscriptions.remove_feature(db, subscription_id, feature_id, now=MID_CYCLE)
    await subscriptions.change_tier(db, subscription_id, catalog["tiers"]["pro"].id, now=MID_CYCLE)
    await subscriptions.cancel_subscription(db, subscription_id, now=MID_CYCLE)
    await subscriptions.reactivate_subscription(db, subscription_id)

    # Tier defaults attached on create or on the move to pro are logged separately
    entries = [e for e in await _changes(db, subscription_id) if e.notes != "Included with tier"]
    assert len(entries) == 5

    stored = (await db.execute(select(Subscription).where(Subscription.id == subscription_id))).scalar_one()
    assert stored.tier_id == catalog["tiers"]["pro"].id


MONTH_END_START = datetime(2025, 1, 31, 12, 0, 0)


@pytest.mark.asyncio
async def test_prorated_add_in_short_cycle_after_month_end_start(db, catalog, restaurant):
    """Jan 31 -> Feb 28 is a 28-day cycle: day one pays in full, day 14 pays half."""
    subscription = await subscriptions.create_subscription(
        db, restaurant.id, catalog["tiers"]["pro"].id, now=MONTH_END_START
    )
    subscription_id = subscription.id
    assert subscription.next_billing_date == datetime(2025, 2, 28, 12, 0, 0)

    full = await subscriptions.add_feature(
        db, subscription_id, catalog["features"]["advanced_analytics"].id, prorated=True, now=MONTH_END_START
    )
    assert full.price_at_purchase == Decimal("6.99")

    # priority support: 9.99 at 30% off = 6.99, half of the 28 days left
    half = await subscriptions.add_feature(
        db, subscription_id, catalog["features"]["priority_support"].id, prorated=True,
        now=datetime(2025, 2, 14, 12, 0, 0),
    )
    assert half.price_at_purchase == Decimal("3.50")


@pytest.mark.asyncio
async def test_renewals_keep_month_end_anniversary(db, catalog, restaurant):
    subscription = await subscriptions.create_subscription(
        db, restaurant.id, catalog["tiers"]["pro"].id, now=MONTH_END_START
    )
    subscription_id = subscription.id

    first = await subscriptions.process_renewal(db, subscription_id, now=datetime(2025, 2, 28, 12, 0, 0))
    assert first.next_billing_date == datetime(2025, 3, 31, 12, 0, 0)
    assert first.renewal_count == 1
    assert pricing.cycle_bounds(first) == (datetime(2025, 2, 28, 12, 0, 0), datetime(2025, 3, 31, 12, 0, 0))

    second = await subscriptions.process_renewal(db, subscription_id, now=datetime(2025, 3, 31, 12, 0, 0))
    assert second.next_billing_date == datetime(2025, 4, 30, 12, 0, 0)
    assert pricing.cycle_bounds(second) == (datetime(2025, 3, 31, 12, 0, 0), datetime(2025, 4, 30, 12, 0, 0))


@pytest.mark.asyncio
async def test_history_of_unknown_subscription_is_empty(db, catalog):
    assert await history.get_history(db, uuid.uuid4()) == []


@pytest.mark.asyncio
async def test_removal_records_tier_list_price(db, catalog, restaurant):
    """The removal snapshot keeps both the locked price and the catalog price."""
    subscription = await _subscribe(db, restaurant, catalog)
    subscription_id = subscription.id
    feature_id = catalog["features"]["advanced_analytics"].id
    await subscriptions.add_feature(db, subscription_id, feature_id, prorated=True, now=MID_CYCLE)

    await subscriptions.remove_feature(db, subscription_id, feature_id, prorated=False, now=MID_CYCLE)

    [entry] = await _changes(db, subscription_id, ChangeType.FEATURE_REMOVED)
    assert entry.previous_value["price_at_purchase"] == "3.50"
    assert entry.previous_value["list_price"] == "6.99"


@pytest.mark.asyncio
async def test_tier_change_logs_newly_included_features(db, catalog, restaurant):
    """Defaults attached by a tier change get feature_added entries, as on create."""
    subscription = await _subscribe(db, restaurant, catalog, tier="basic")
    subscription_id = subscription.id

    await subscriptions.change_tier(db, subscription_id, catalog["tiers"]["pro"].id, now=MID_CYCLE)

    added = [
        e for e in await _changes(db, subscription_id, ChangeType.FEATURE_ADDED)
        if e.notes == "Included with tier"
    ]
    keys = sorted(e.new_value["feature_key"] for e in added)
    assert keys == [
        "allergen_info", "basic_analytics",
        "custom_fonts", "nutritional_info", "pdf_export", "unlimited_images",
    ]
    assert all(e.amount_adjustment == Decimal("0") for e in added)
