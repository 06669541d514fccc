"""Read-only queries over the tier/feature catalog."""

import logging
from collections import defaultdict
from datetime import datetime
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError
from app.models.feature import Feature, TierFeature
from app.models.tier import Tier
from app.schemas.catalog import AvailableFeatureOut, TierOut, FeatureValidationOut
from app.services.pricing import discounted_price, prorate, subscription_fraction
from app.services.queries import get_active_feature_row, get_subscription_or_404

logger = logging.getLogger(__name__)


def _available_feature(tier_feature: TierFeature, feature: Feature) -> AvailableFeatureOut:
    return AvailableFeatureOut(
        tier_id=tier_feature.tier_id,
        feature_id=feature.id,
        feature_key=feature.key,
        feature_name=feature.name,
        feature_description=feature.description,
        feature_category=feature.category,
        base_price=feature.base_price,
        included_by_default=tier_feature.included_by_default,
        discount_percentage=tier_feature.discount_percentage,
        final_price=discounted_price(feature.base_price, tier_feature.discount_percentage),
    )


def _tier_out(tier: Tier, features: List[AvailableFeatureOut]) -> TierOut:
    return TierOut(
        tier_id=tier.id,
        tier_name=tier.name,
        tier_description=tier.description,
        tier_base_price=tier.base_price_monthly,
        max_menus=tier.max_menus,
        price_per_additional_menu=tier.price_per_additional_menu,
        allows_pdf=tier.allows_pdf,
        allows_custom_fonts=tier.allows_custom_fonts,
        allows_images=tier.allows_images,
        allows_multiple_locations=tier.allows_multiple_locations,
        sort_order=tier.sort_order,
        features=features,
    )


def _offer_query():
    return (
        select(TierFeature, Feature)
        .join(Feature, Feature.id == TierFeature.feature_id)
        .where(Feature.active == True)  # noqa: E712
        .order_by(Feature.category, Feature.name)
    )


async def get_tier(db: AsyncSession, tier_id: int, active_only: bool = True) -> Tier:
    tier = await db.get(Tier, tier_id)
    if tier is None or (active_only and not tier.active):
        raise NotFoundError(f"Tier {tier_id} not found")
    return tier


async def list_active_tiers(db: AsyncSession) -> List[TierOut]:
    """Active tiers ordered by sort_order, each with its offered features."""
    result = await db.execute(
        select(Tier).where(Tier.active == True).order_by(Tier.sort_order, Tier.id)  # noqa: E712
    )
    tiers = result.scalars().all()
    if not tiers:
        return []

    offers = await db.execute(_offer_query().where(TierFeature.tier_id.in_([t.id for t in tiers])))
    by_tier = defaultdict(list)
    for tier_feature, feature in offers.all():
        by_tier[tier_feature.tier_id].append(_available_feature(tier_feature, feature))

    return [_tier_out(tier, by_tier[tier.id]) for tier in tiers]


async def get_tier_with_features(db: AsyncSession, tier_id: int) -> TierOut:
    tier = await get_tier(db, tier_id)
    return _tier_out(tier, await list_features_for_tier(db, tier_id))


async def list_features_for_tier(db: AsyncSession, tier_id: int) -> List[AvailableFeatureOut]:
    """Features offered under a tier with final prices. Unknown tier gives []."""
    result = await db.execute(_offer_query().where(TierFeature.tier_id == tier_id))
    return [_available_feature(tf, f) for tf, f in result.all()]


async def list_active_features(db: AsyncSession) -> List[Feature]:
    result = await db.execute(
        select(Feature).where(Feature.active == True).order_by(Feature.category, Feature.name)  # noqa: E712
    )
    return list(result.scalars().all())


async def get_offered_feature(
    db: AsyncSession, tier_id: int, feature_id: int
) -> Optional[Tuple[TierFeature, Feature]]:
    """The (offer, feature) pair if the active feature is offered under the tier."""
    result = await db.execute(
        _offer_query().where(
            TierFeature.tier_id == tier_id,
            TierFeature.feature_id == feature_id,
        )
    )
    row = result.first()
    if row is None:
        return None
    return row[0], row[1]


async def validate_feature_addition(
    db: AsyncSession,
    subscription_id: UUID,
    feature_id: int,
    prorated: bool = False,
    now: Optional[datetime] = None,
) -> FeatureValidationOut:
    """Dry run of add_feature: would it succeed, and at what price."""
    subscription = await get_subscription_or_404(db, subscription_id)

    if not subscription.active:
        return FeatureValidationOut(can_add=False, reason="Subscription is not active")

    if await get_active_feature_row(db, subscription_id, feature_id) is not None:
        return FeatureValidationOut(can_add=False, reason="Feature already added")

    offer = await get_offered_feature(db, subscription.tier_id, feature_id)
    if offer is None:
        return FeatureValidationOut(can_add=False, reason="Feature not available for this tier")

    tier_feature, feature = offer
    price = discounted_price(feature.base_price, tier_feature.discount_percentage)
    if prorated:
        price = prorate(price, subscription_fraction(subscription, now or datetime.utcnow()))

    return FeatureValidationOut(
        can_add=True,
        estimated_price=price,
        discount_applied=tier_feature.discount_percentage,
    )
