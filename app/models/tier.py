"""Subscription tiers (plan levels) of the catalog."""

from sqlalchemy import Column, String, Integer, Boolean, DateTime, Numeric, Text, func
from sqlalchemy.orm import relationship

from app.core.database import Base

# max_menus sentinel meaning "no limit"
UNLIMITED = -1


class Tier(Base):
    __tablename__ = "tiers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, unique=True, nullable=False)
    description = Column(Text, nullable=True)
    base_price_monthly = Column(Numeric(10, 2), nullable=False, default=0)
    max_menus = Column(Integer, nullable=False, default=1)  # -1 = unlimited
    price_per_additional_menu = Column(Numeric(10, 2), nullable=False, default=0)
    customization_level = Column(Integer, nullable=False, default=1)
    allows_pdf = Column(Boolean, nullable=False, default=False)
    allows_custom_fonts = Column(Boolean, nullable=False, default=False)
    allows_images = Column(Boolean, nullable=False, default=False)
    allows_multiple_locations = Column(Boolean, nullable=False, default=False)
    active = Column(Boolean, nullable=False, default=True)
    sort_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    # Relationships
    tier_features = relationship("TierFeature", back_populates="tier")
    subscriptions = relationship("Subscription", back_populates="tier")

    @property
    def is_unlimited(self) -> bool:
        return self.max_menus == UNLIMITED
