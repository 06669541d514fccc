"""Concurrent mutations of one subscription are serialized, never lost.

Runs against a file-backed SQLite database so each session gets its own
connection, the way concurrent requests would against PostgreSQL.
"""

import asyncio
import uuid
from datetime import datetime
import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from conftest import CYCLE_START
from app.core.database import Base
from app.core.exceptions import ConflictError
from app.core.seed import seed_catalog
from app.models.feature import Feature
from app.models.restaurant import Restaurant
from app.models.subscription import ChangeType, SubscriptionChange, SubscriptionFeature
from app.models.tier import Tier
from app.models.user import UserProfile
from app.services import invoices, subscriptions


@pytest_asyncio.fixture
async def file_db(tmp_path):
    """Session factory plus a pro subscription on a file-backed database."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    Session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    async with Session() as session:
        await seed_catalog(session)
        owner = UserProfile(id=uuid.uuid4(), email="owner@example.com")
        session.add(owner)
        await session.flush()
        restaurant = Restaurant(owner_id=owner.id, name="Concurrent Cafe", slug="concurrent-cafe")
        session.add(restaurant)
        await session.commit()

        pro = (await session.execute(select(Tier).where(Tier.name == "pro"))).scalar_one()
        features = {f.key: f.id for f in (await session.execute(select(Feature))).scalars().all()}
        subscription = await subscriptions.create_subscription(session, restaurant.id, pro.id, now=CYCLE_START)

    yield Session, subscription.id, features
    await engine.dispose()


async def _add(Session, subscription_id, feature_id):
    async with Session() as session:
        purchase = await subscriptions.add_feature(session, subscription_id, feature_id, now=CYCLE_START)
        return purchase.feature_id


@pytest.mark.asyncio
async def test_concurrent_adds_both_land(file_db):
    Session, subscription_id, features = file_db
    wanted = [features["advanced_analytics"], features["priority_support"]]

    added = await asyncio.gather(*(_add(Session, subscription_id, fid) for fid in wanted))
    assert sorted(added) == sorted(wanted)

    async with Session() as session:
        active = (await session.execute(
            select(SubscriptionFeature.feature_id).where(
                SubscriptionFeature.subscription_id == subscription_id,
                SubscriptionFeature.is_active == True,  # noqa: E712
                SubscriptionFeature.feature_id.in_(wanted),
            )
        )).scalars().all()
        assert sorted(active) == sorted(wanted)

        logged = (await session.execute(
            select(SubscriptionChange).where(
                SubscriptionChange.subscription_id == subscription_id,
                SubscriptionChange.change_type == ChangeType.FEATURE_ADDED,
            )
        )).scalars().all()
        assert {e.new_value["feature_id"] for e in logged} >= set(wanted)


@pytest.mark.asyncio
async def test_concurrent_duplicate_add_conflicts_once(file_db):
    Session, subscription_id, features = file_db
    feature_id = features["advanced_analytics"]

    results = await asyncio.gather(
        _add(Session, subscription_id, feature_id),
        _add(Session, subscription_id, feature_id),
        return_exceptions=True,
    )

    assert results.count(feature_id) == 1
    assert sum(isinstance(r, ConflictError) for r in results) == 1

    async with Session() as session:
        rows = (await session.execute(
            select(SubscriptionFeature).where(
                SubscriptionFeature.subscription_id == subscription_id,
                SubscriptionFeature.feature_id == feature_id,
            )
        )).scalars().all()
        assert len(rows) == 1


@pytest.mark.asyncio
async def test_first_invoices_of_a_year_get_distinct_numbers(file_db):
    """Two subscriptions invoiced at once share the year counter without clashing."""
    Session, subscription_id, _features = file_db

    async with Session() as session:
        owner = UserProfile(id=uuid.uuid4(), email="second@example.com")
        session.add(owner)
        await session.flush()
        other_restaurant = Restaurant(owner_id=owner.id, name="Second Bistro", slug="second-bistro")
        session.add(other_restaurant)
        await session.commit()
        basic = (await session.execute(select(Tier).where(Tier.name == "basic"))).scalar_one()
        other = await subscriptions.create_subscription(session, other_restaurant.id, basic.id, now=CYCLE_START)

    async def _invoice(target_id):
        async with Session() as session:
            invoice = await invoices.generate_invoice(
                session, target_id, datetime(2025, 6, 1), datetime(2025, 7, 1), now=CYCLE_START
            )
            return invoice.invoice_number

    numbers = await asyncio.gather(_invoice(subscription_id), _invoice(other.id))

    assert sorted(numbers) == ["INV-2025-000001", "INV-2025-000002"]
