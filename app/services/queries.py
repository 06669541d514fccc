"""Row loaders and row locks shared by the billing services."""

from datetime import datetime
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError
from app.models.feature import Feature
from app.models.restaurant import Restaurant, Menu
from app.models.subscription import Subscription, SubscriptionFeature


async def get_subscription_or_404(db: AsyncSession, subscription_id: UUID) -> Subscription:
    result = await db.execute(select(Subscription).where(Subscription.id == subscription_id))
    subscription = result.scalar_one_or_none()
    if subscription is None:
        raise NotFoundError(f"Subscription {subscription_id} not found")
    return subscription


async def lock_subscription(db: AsyncSession, subscription_id: UUID) -> Subscription:
    """Take the per-subscription write lock for the current transaction.

    The row is touched with an UPDATE before anything is read: on PostgreSQL
    that holds the row lock until commit, on SQLite it takes the database
    write lock. Concurrent mutations of the same subscription therefore run
    one after the other.
    """
    result = await db.execute(
        update(Subscription)
        .where(Subscription.id == subscription_id)
        .values(updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFoundError(f"Subscription {subscription_id} not found")

    result = await db.execute(
        select(Subscription)
        .where(Subscription.id == subscription_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def lock_restaurant(db: AsyncSession, restaurant_id: UUID) -> Restaurant:
    """Same as lock_subscription, for operations scoped to a restaurant."""
    result = await db.execute(
        update(Restaurant)
        .where(Restaurant.id == restaurant_id)
        .values(updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFoundError(f"Restaurant {restaurant_id} not found")

    result = await db.execute(
        select(Restaurant)
        .where(Restaurant.id == restaurant_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def get_restaurant_or_404(db: AsyncSession, restaurant_id: UUID) -> Restaurant:
    result = await db.execute(select(Restaurant).where(Restaurant.id == restaurant_id))
    restaurant = result.scalar_one_or_none()
    if restaurant is None:
        raise NotFoundError(f"Restaurant {restaurant_id} not found")
    return restaurant


async def count_menus(db: AsyncSession, restaurant_id: UUID) -> int:
    """How many menus a restaurant currently has."""
    result = await db.execute(
        select(func.count(Menu.id)).where(Menu.restaurant_id == restaurant_id)
    )
    return result.scalar_one()


async def get_active_features(
    db: AsyncSession, subscription_id: UUID
) -> List[Tuple[SubscriptionFeature, Feature]]:
    """Active purchased features of a subscription, oldest first."""
    result = await db.execute(
        select(SubscriptionFeature, Feature)
        .join(Feature, Feature.id == SubscriptionFeature.feature_id)
        .where(
            SubscriptionFeature.subscription_id == subscription_id,
            SubscriptionFeature.is_active == True,  # noqa: E712
        )
        .order_by(SubscriptionFeature.added_at, Feature.name)
    )
    return [(row[0], row[1]) for row in result.all()]


async def get_active_feature_row(
    db: AsyncSession, subscription_id: UUID, feature_id: int
) -> Optional[SubscriptionFeature]:
    result = await db.execute(
        select(SubscriptionFeature).where(
            SubscriptionFeature.subscription_id == subscription_id,
            SubscriptionFeature.feature_id == feature_id,
            SubscriptionFeature.is_active == True,  # noqa: E712
        )
    )
    return result.scalars().first()
