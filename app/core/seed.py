"""Seed the default tier/feature catalog on app startup."""

import logging
from decimal import Decimal
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.database import async_session
from app.models.feature import Feature, TierFeature
from app.models.tier import Tier, UNLIMITED

logger = logging.getLogger(__name__)

DEFAULT_FEATURES = [
    # key, name, category, monthly base price
    ("pdf_export", "PDF Export", "design", "4.99"),
    ("custom_fonts", "Custom Fonts", "design", "2.99"),
    ("unlimited_images", "Unlimited Images", "content", "4.99"),
    ("allergen_info", "Allergen Information", "content", "1.99"),
    ("nutritional_info", "Nutritional Information", "content", "2.99"),
    ("basic_analytics", "Basic Analytics", "analytics", "3.99"),
    ("advanced_analytics", "Advanced Analytics", "analytics", "9.99"),
    ("pos_integration", "POS Integration", "integrations", "14.99"),
    ("multi_location", "Multi-location Management", "locations", "19.99"),
    ("priority_support", "Priority Support", "support", "9.99"),
]

DEFAULT_TIERS = [
    {
        "name": "free",
        "description": "One menu with the essentials",
        "base_price_monthly": Decimal("0"),
        "max_menus": 1,
        "price_per_additional_menu": Decimal("0"),
        "customization_level": 1,
        "sort_order": 0,
        "included": [],
        "offered": {"allergen_info": 0, "basic_analytics": 0},
    },
    {
        "name": "basic",
        "description": "Allergen info and analytics for a single menu",
        "base_price_monthly": Decimal("9.99"),
        "max_menus": 1,
        "price_per_additional_menu": Decimal("0"),
        "customization_level": 2,
        "allows_images": True,
        "sort_order": 1,
        "included": ["basic_analytics", "allergen_info"],
        "offered": {
            "pdf_export": 20, "custom_fonts": 20, "unlimited_images": 20,
            "nutritional_info": 20, "advanced_analytics": 20, "priority_support": 20,
        },
    },
    {
        "name": "pro",
        "description": "Up to five menus with full design control",
        "base_price_monthly": Decimal("29.99"),
        "max_menus": 5,
        "price_per_additional_menu": Decimal("4.99"),
        "customization_level": 3,
        "allows_pdf": True,
        "allows_custom_fonts": True,
        "allows_images": True,
        "sort_order": 2,
        "included": [
            "pdf_export", "custom_fonts", "unlimited_images",
            "basic_analytics", "allergen_info", "nutritional_info",
        ],
        "offered": {
            "advanced_analytics": 30, "pos_integration": 30,
            "multi_location": 30, "priority_support": 30,
        },
    },
    {
        "name": "enterprise",
        "description": "Unlimited menus and locations",
        "base_price_monthly": Decimal("79.99"),
        "max_menus": UNLIMITED,
        "price_per_additional_menu": Decimal("0"),
        "customization_level": 4,
        "allows_pdf": True,
        "allows_custom_fonts": True,
        "allows_images": True,
        "allows_multiple_locations": True,
        "sort_order": 3,
        "included": [
            "pdf_export", "custom_fonts", "unlimited_images", "basic_analytics",
            "allergen_info", "nutritional_info", "advanced_analytics",
            "multi_location", "priority_support",
        ],
        "offered": {"pos_integration": 50},
    },
]


async def seed_catalog(db: AsyncSession) -> bool:
    """Insert the default catalog if there are no tiers yet. Does not commit."""
    tier_count = (await db.execute(select(func.count(Tier.id)))).scalar_one()
    if tier_count:
        return False

    features = {}
    for key, name, category, price in DEFAULT_FEATURES:
        feature = Feature(key=key, name=name, category=category, base_price=Decimal(price), active=True)
        db.add(feature)
        features[key] = feature
    await db.flush()

    for tier_data in DEFAULT_TIERS:
        data = {k: v for k, v in tier_data.items() if k not in ("included", "offered")}
        tier = Tier(active=True, **data)
        db.add(tier)
        await db.flush()

        for key in tier_data["included"]:
            db.add(TierFeature(tier_id=tier.id, feature_id=features[key].id,
                               included_by_default=True, discount_percentage=Decimal("0")))
        for key, discount in tier_data["offered"].items():
            db.add(TierFeature(tier_id=tier.id, feature_id=features[key].id,
                               included_by_default=False, discount_percentage=Decimal(discount)))

    await db.flush()
    return True


async def seed_default_catalog():
    """Create the default catalog on startup if it doesn't exist."""
    async with async_session() as db:
        try:
            if await seed_catalog(db):
                await db.commit()
                logger.info("Seeded default catalog: %d tiers, %d features",
                            len(DEFAULT_TIERS), len(DEFAULT_FEATURES))
            else:
                logger.info("Catalog already present, skipping seed")
        except Exception as e:
            logger.error("Failed to seed catalog: %s", e)
            await db.rollback()
