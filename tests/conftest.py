"""Shared test fixtures for the billing API tests.

Uses an in-memory SQLite async engine so tests run without PostgreSQL.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("AUTH_JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("SEED_CATALOG", "false")

import uuid
import pytest
import pytest_asyncio
from datetime import datetime
from httpx import AsyncClient, ASGITransport
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base, get_db
from app.core.seed import seed_catalog
from app.main import app

# Import all models to ensure they're registered with Base.metadata
from app.models.user import UserProfile, UserRole
from app.models.restaurant import Restaurant, Menu
from app.models.tier import Tier
from app.models.feature import Feature, TierFeature
from app.models.subscription import Subscription, SubscriptionFeature, SubscriptionChange
from app.models.invoice import Invoice, InvoiceLineItem, InvoiceNumberSequence
from app.services.auth import create_access_token


# Use aiosqlite for fast, isolated tests
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSession = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

# Fixed clock for the service tests: a 30-day cycle from Jun 1 to Jul 1
CYCLE_START = datetime(2025, 6, 1, 12, 0, 0)


@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def override_get_db():
    async with TestSession() as session:
        yield session


app.dependency_overrides[get_db] = override_get_db


@pytest_asyncio.fixture
async def client():
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def db():
    """Direct DB session for test setup/assertions."""
    async with TestSession() as session:
        yield session


@pytest_asyncio.fixture
async def catalog(db):
    """Default catalog; tiers by name and features by key."""
    await seed_catalog(db)
    await db.commit()

    tiers = {t.name: t for t in (await db.execute(select(Tier))).scalars().all()}
    features = {f.key: f for f in (await db.execute(select(Feature))).scalars().all()}
    return {"tiers": tiers, "features": features}


async def make_user(db, role=UserRole.RESTAURANT_OWNER, email=None):
    user = UserProfile(
        id=uuid.uuid4(),
        email=email or f"{uuid.uuid4().hex[:8]}@example.com",
        role=role,
    )
    db.add(user)
    await db.commit()
    return user


async def make_restaurant(db, owner, name="Trattoria Test", menus=0):
    restaurant = Restaurant(
        owner_id=owner.id,
        name=name,
        slug=f"{name.lower().replace(' ', '-')}-{uuid.uuid4().hex[:6]}",
    )
    db.add(restaurant)
    await db.flush()
    for i in range(menus):
        db.add(Menu(restaurant_id=restaurant.id, name=f"Menu {i + 1}", slug=f"menu-{i + 1}"))
    await db.commit()
    return restaurant


async def add_menus(db, restaurant, count):
    for i in range(count):
        db.add(Menu(restaurant_id=restaurant.id, name=f"Extra {i + 1}", slug=f"extra-{uuid.uuid4().hex[:6]}"))
    await db.commit()


def auth_headers(user) -> dict:
    """Bearer header with an identity-provider style token for the user."""
    token = create_access_token({"sub": str(user.id), "email": user.email, "role": "authenticated"})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def owner(db):
    return await make_user(db, email="owner@example.com")


@pytest_asyncio.fixture
async def admin(db):
    return await make_user(db, role=UserRole.PLATFORM_ADMIN, email="admin@example.com")


@pytest_asyncio.fixture
async def restaurant(db, owner):
    return await make_restaurant(db, owner)


@pytest.fixture
def owner_headers(owner):
    return auth_headers(owner)


@pytest.fixture
def admin_headers(admin):
    return auth_headers(admin)
