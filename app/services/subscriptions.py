"""Subscription lifecycle: create, add/remove features, change tier, cancel,
reactivate and renew.

Every mutation runs inside ``unit_of_work`` and starts by taking the
subscription lock, so the state change and its ledger entry are written
together and concurrent mutations of one subscription are serialized.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import unit_of_work
from app.core.exceptions import ConflictError, InvalidStateError, NotFoundError
from app.models.feature import Feature, TierFeature
from app.models.restaurant import Restaurant
from app.models.subscription import BillingCycle, Subscription, SubscriptionFeature
from app.models.tier import Tier
from app.schemas.changes import (
    BillingState, CancellationState, Cancelled, FeatureAdded, FeaturePurchase,
    FeatureRemoval, FeatureRemoved, Renewed, TierChanged, TierChangeResult, TierSnapshot,
)
from app.schemas.subscription import ActiveFeatureOut, SubscriptionWithPricingOut
from app.services import history
from app.services.catalog import get_offered_feature, get_tier
from app.services.pricing import (
    billing_date, compute_monthly_total, discounted_price, next_billing_date, prorate,
    subscription_fraction, to_decimal,
)
from app.services.queries import (
    get_active_feature_row, get_active_features, get_restaurant_or_404,
    get_subscription_or_404, lock_restaurant, lock_subscription,
)

logger = logging.getLogger(__name__)


def _billing_state(subscription: Subscription) -> BillingState:
    return BillingState(
        active=subscription.active,
        auto_renew=subscription.auto_renew,
        next_billing_date=subscription.next_billing_date,
    )


def _ensure_active(subscription: Subscription) -> None:
    if not subscription.active:
        raise InvalidStateError(f"Subscription {subscription.id} is not active")


async def _attach_feature(
    db: AsyncSession,
    subscription: Subscription,
    feature_id: int,
    prorated: bool,
    now: datetime,
    included: bool = False,
) -> SubscriptionFeature:
    """Insert the purchase row and its feature_added ledger entry."""
    if await get_active_feature_row(db, subscription.id, feature_id) is not None:
        raise ConflictError(f"Feature {feature_id} is already active on this subscription")

    offer = await get_offered_feature(db, subscription.tier_id, feature_id)
    if offer is None:
        raise NotFoundError(f"Feature {feature_id} is not available for this tier")
    tier_feature, feature = offer

    list_price = discounted_price(feature.base_price, tier_feature.discount_percentage)
    if included:
        price = Decimal("0.00")
    elif prorated:
        price = prorate(list_price, subscription_fraction(subscription, now))
    else:
        price = list_price

    purchase = SubscriptionFeature(
        subscription_id=subscription.id,
        feature_id=feature.id,
        added_at=now,
        price_at_purchase=price,
        is_active=True,
    )
    db.add(purchase)
    await db.flush()

    await history.record(
        db,
        subscription.id,
        FeatureAdded(new_value=FeaturePurchase(
            feature_id=feature.id,
            feature_key=feature.key,
            price_at_purchase=price,
            list_price=list_price,
            prorated=prorated and not included,
        )),
        amount_adjustment=price,
        prorated_amount=price if prorated and not included else Decimal("0"),
        notes="Included with tier" if included else None,
    )
    return purchase


async def _default_offers(db: AsyncSession, tier_id: int) -> List[TierFeature]:
    result = await db.execute(
        select(TierFeature)
        .join(Feature, Feature.id == TierFeature.feature_id)
        .where(
            TierFeature.tier_id == tier_id,
            TierFeature.included_by_default == True,  # noqa: E712
            Feature.active == True,  # noqa: E712
        )
        .order_by(Feature.name)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------

async def create_subscription(
    db: AsyncSession,
    restaurant_id: UUID,
    tier_id: int,
    billing_cycle: BillingCycle = BillingCycle.MONTHLY,
    feature_ids: Iterable[int] = (),
    now: Optional[datetime] = None,
) -> Subscription:
    """Start a subscription with the tier's default features plus any extras.

    Default-included features are attached at price 0. Extras that the tier
    already includes are skipped.
    """
    now = now or datetime.utcnow()

    async with unit_of_work(db, "subscription creation"):
        await lock_restaurant(db, restaurant_id)
        tier = await get_tier(db, tier_id)

        existing = await get_active_subscription(db, restaurant_id)
        if existing is not None:
            raise ConflictError(
                "Restaurant already has an active subscription",
                {"subscription_id": str(existing.id)},
            )

        subscription = Subscription(
            restaurant_id=restaurant_id,
            tier_id=tier.id,
            billing_cycle=BillingCycle(billing_cycle),
            active=True,
            started_at=now,
            current_period_start=now,
            next_billing_date=next_billing_date(now, billing_cycle),
            renewal_count=0,
            auto_renew=True,
        )
        db.add(subscription)
        await db.flush()

        included = set()
        for offer in await _default_offers(db, tier.id):
            await _attach_feature(db, subscription, offer.feature_id, False, now, included=True)
            included.add(offer.feature_id)

        for feature_id in dict.fromkeys(feature_ids):
            if feature_id in included:
                continue
            await _attach_feature(db, subscription, feature_id, False, now)

    logger.info(
        "Created subscription %s for restaurant %s on tier %s",
        subscription.id, restaurant_id, tier.name,
    )
    return subscription


async def add_feature(
    db: AsyncSession,
    subscription_id: UUID,
    feature_id: int,
    prorated: bool = False,
    now: Optional[datetime] = None,
) -> SubscriptionFeature:
    """Purchase a feature; its price is locked from this point on."""
    now = now or datetime.utcnow()

    async with unit_of_work(db, "feature addition"):
        subscription = await lock_subscription(db, subscription_id)
        _ensure_active(subscription)
        purchase = await _attach_feature(db, subscription, feature_id, prorated, now)

    logger.info(
        "Added feature %s to subscription %s at %s",
        feature_id, subscription_id, purchase.price_at_purchase,
    )
    return purchase


async def remove_feature(
    db: AsyncSession,
    subscription_id: UUID,
    feature_id: int,
    prorated: bool = True,
    now: Optional[datetime] = None,
) -> Decimal:
    """Deactivate a purchased feature. Returns the refund credited (>= 0)."""
    now = now or datetime.utcnow()

    async with unit_of_work(db, "feature removal"):
        subscription = await lock_subscription(db, subscription_id)
        _ensure_active(subscription)

        purchase = await get_active_feature_row(db, subscription_id, feature_id)
        if purchase is None:
            raise InvalidStateError(f"Feature {feature_id} is not active on this subscription")
        feature = await db.get(Feature, feature_id)
        offer = await get_offered_feature(db, subscription.tier_id, feature_id)
        list_price = discounted_price(feature.base_price, offer[0].discount_percentage) if offer else None

        refund = Decimal("0.00")
        if prorated:
            refund = prorate(purchase.price_at_purchase, subscription_fraction(subscription, now))

        purchase.is_active = False
        purchase.removed_at = now

        await history.record(
            db,
            subscription_id,
            FeatureRemoved(
                previous_value=FeaturePurchase(
                    feature_id=feature_id,
                    feature_key=feature.key,
                    price_at_purchase=purchase.price_at_purchase,
                    list_price=list_price,
                ),
                new_value=FeatureRemoval(feature_id=feature_id, refund_amount=refund, prorated=prorated),
            ),
            amount_adjustment=-refund,
            prorated_amount=refund,
        )

    logger.info("Removed feature %s from subscription %s, refund %s", feature_id, subscription_id, refund)
    return refund


async def change_tier(
    db: AsyncSession,
    subscription_id: UUID,
    new_tier_id: int,
    prorated: bool = True,
    now: Optional[datetime] = None,
) -> Decimal:
    """Move to another tier. Returns the (prorated) base price difference.

    Features the new tier does not offer are deactivated, and features the
    new tier includes by default are attached at price 0, each with its own
    feature_added entry as on creation. Features kept across the move keep
    their locked price.
    """
    now = now or datetime.utcnow()

    async with unit_of_work(db, "tier change"):
        subscription = await lock_subscription(db, subscription_id)
        _ensure_active(subscription)

        new_tier = await get_tier(db, new_tier_id)
        if new_tier.id == subscription.tier_id:
            raise InvalidStateError(f"Subscription is already on tier {new_tier.name}")
        old_tier = await db.get(Tier, subscription.tier_id)

        result = await db.execute(
            select(TierFeature)
            .join(Feature, Feature.id == TierFeature.feature_id)
            .where(TierFeature.tier_id == new_tier.id, Feature.active == True)  # noqa: E712
        )
        offered = {offer.feature_id: offer for offer in result.scalars().all()}

        active = await get_active_features(db, subscription_id)
        active_ids = {purchase.feature_id for purchase, _ in active}

        deactivated = []
        for purchase, _feature in active:
            if purchase.feature_id not in offered:
                purchase.is_active = False
                purchase.removed_at = now
                deactivated.append(purchase.feature_id)

        subscription.tier_id = new_tier.id
        await db.flush()

        activated = []
        for feature_id, offer in sorted(offered.items()):
            if offer.included_by_default and feature_id not in active_ids:
                await _attach_feature(db, subscription, feature_id, False, now, included=True)
                activated.append(feature_id)

        delta = to_decimal(new_tier.base_price_monthly) - to_decimal(old_tier.base_price_monthly)
        adjustment = prorate(delta, subscription_fraction(subscription, now)) if prorated else Decimal("0.00")

        await history.record(
            db,
            subscription_id,
            TierChanged(
                previous_value=TierSnapshot(tier_id=old_tier.id, tier_name=old_tier.name),
                new_value=TierChangeResult(
                    tier_id=new_tier.id,
                    tier_name=new_tier.name,
                    activated_feature_ids=activated,
                    deactivated_feature_ids=deactivated,
                ),
            ),
            amount_adjustment=adjustment,
            prorated_amount=adjustment if prorated else Decimal("0"),
        )

    logger.info(
        "Subscription %s moved from %s to %s (adjustment %s)",
        subscription_id, old_tier.name, new_tier.name, adjustment,
    )
    return adjustment


async def cancel_subscription(
    db: AsyncSession,
    subscription_id: UUID,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Subscription:
    """Stop auto-renewal. Service continues until next_billing_date."""
    now = now or datetime.utcnow()

    async with unit_of_work(db, "subscription cancellation"):
        subscription = await lock_subscription(db, subscription_id)
        _ensure_active(subscription)
        if subscription.cancelled_at is not None:
            raise InvalidStateError("Subscription is already cancelled")

        previous = _billing_state(subscription)
        subscription.auto_renew = False
        subscription.cancelled_at = now
        subscription.cancellation_reason = reason

        await history.record(
            db,
            subscription_id,
            Cancelled(
                previous_value=previous,
                new_value=CancellationState(
                    active=True,
                    auto_renew=False,
                    next_billing_date=subscription.next_billing_date,
                    reason=reason,
                ),
            ),
            notes=reason or "Cancelled by user",
        )

    logger.info("Subscription %s cancelled, active until %s", subscription_id, subscription.next_billing_date)
    return subscription


async def reactivate_subscription(
    db: AsyncSession,
    subscription_id: UUID,
) -> Subscription:
    """Undo a pending cancellation before the period ends."""
    async with unit_of_work(db, "subscription reactivation"):
        subscription = await lock_subscription(db, subscription_id)
        if not subscription.active:
            raise InvalidStateError("Subscription has already expired and cannot be reactivated")
        if subscription.cancelled_at is None:
            raise InvalidStateError("Subscription is not cancelled")

        previous = _billing_state(subscription)
        subscription.auto_renew = True
        subscription.cancelled_at = None
        subscription.cancellation_reason = None

        await history.record(
            db,
            subscription_id,
            Renewed(previous_value=previous, new_value=_billing_state(subscription)),
            notes="Subscription reactivated",
        )

    logger.info("Subscription %s reactivated", subscription_id)
    return subscription


async def process_renewal(
    db: AsyncSession,
    subscription_id: UUID,
    now: Optional[datetime] = None,
) -> Subscription:
    """Period-end processing for one subscription.

    Auto-renewing subscriptions move to the next cycle. Cancelled ones become
    inactive with expires_at set to the end of the paid period.
    """
    now = now or datetime.utcnow()

    async with unit_of_work(db, "subscription renewal"):
        subscription = await lock_subscription(db, subscription_id)
        _ensure_active(subscription)
        if subscription.next_billing_date is None or now < subscription.next_billing_date:
            raise InvalidStateError(
                "Subscription is not due for renewal",
                {"next_billing_date": str(subscription.next_billing_date)},
            )

        previous = _billing_state(subscription)
        if subscription.auto_renew:
            renewals = (subscription.renewal_count or 0) + 1
            subscription.current_period_start = subscription.next_billing_date
            subscription.renewal_count = renewals
            subscription.next_billing_date = billing_date(
                subscription.started_at, subscription.billing_cycle, renewals + 1
            )
            await history.record(
                db,
                subscription_id,
                Renewed(previous_value=previous, new_value=_billing_state(subscription)),
                notes="Billing cycle renewed",
            )
            logger.info("Subscription %s renewed until %s", subscription_id, subscription.next_billing_date)
        else:
            subscription.active = False
            subscription.expires_at = subscription.next_billing_date
            await history.record(
                db,
                subscription_id,
                Cancelled(
                    previous_value=previous,
                    new_value=CancellationState(
                        active=False,
                        auto_renew=False,
                        next_billing_date=subscription.next_billing_date,
                        reason=subscription.cancellation_reason,
                    ),
                ),
                notes="Subscription expired at period end",
            )
            logger.info("Subscription %s expired at %s", subscription_id, subscription.expires_at)

    return subscription


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

async def get_active_subscription(db: AsyncSession, restaurant_id: UUID) -> Optional[Subscription]:
    result = await db.execute(
        select(Subscription)
        .where(Subscription.restaurant_id == restaurant_id, Subscription.active == True)  # noqa: E712
        .order_by(Subscription.created_at.desc())
    )
    return result.scalars().first()


async def list_active_features(db: AsyncSession, subscription_id: UUID) -> List[ActiveFeatureOut]:
    await get_subscription_or_404(db, subscription_id)
    return [
        ActiveFeatureOut(
            subscription_feature_id=purchase.id,
            feature_id=feature.id,
            feature_key=feature.key,
            feature_name=feature.name,
            price=purchase.price_at_purchase,
            added_at=purchase.added_at,
        )
        for purchase, feature in await get_active_features(db, subscription_id)
    ]


async def build_subscription_view(db: AsyncSession, subscription: Subscription) -> SubscriptionWithPricingOut:
    """Subscription with tier, restaurant name and current monthly total."""
    tier = await db.get(Tier, subscription.tier_id)
    restaurant = await db.get(Restaurant, subscription.restaurant_id)
    breakdown = await compute_monthly_total(db, subscription)
    features = await list_active_features(db, subscription.id)

    return SubscriptionWithPricingOut(
        subscription_id=subscription.id,
        restaurant_id=subscription.restaurant_id,
        restaurant_name=restaurant.name,
        tier_id=tier.id,
        tier_name=tier.name,
        tier_base_price=tier.base_price_monthly,
        billing_cycle=subscription.billing_cycle,
        state=subscription.state,
        started_at=subscription.started_at,
        expires_at=subscription.expires_at,
        next_billing_date=subscription.next_billing_date,
        active=subscription.active,
        auto_renew=subscription.auto_renew,
        cancelled_at=subscription.cancelled_at,
        cancellation_reason=subscription.cancellation_reason,
        monthly_total=breakdown.total,
        active_features_count=len(features),
        active_features=features,
    )


async def get_subscription_with_pricing(db: AsyncSession, subscription_id: UUID) -> SubscriptionWithPricingOut:
    subscription = await get_subscription_or_404(db, subscription_id)
    return await build_subscription_view(db, subscription)


async def list_restaurant_subscriptions(db: AsyncSession, restaurant_id: UUID) -> List[SubscriptionWithPricingOut]:
    """All subscriptions of a restaurant, newest first."""
    await get_restaurant_or_404(db, restaurant_id)
    result = await db.execute(
        select(Subscription)
        .where(Subscription.restaurant_id == restaurant_id)
        .order_by(Subscription.created_at.desc())
    )
    return [await build_subscription_view(db, s) for s in result.scalars().all()]
