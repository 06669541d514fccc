"""Add-on features and the tier/feature offer matrix."""

from datetime import datetime

from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, Numeric, Text, ForeignKey,
    UniqueConstraint, CheckConstraint, func,
)
from sqlalchemy.orm import relationship

from app.core.database import Base


class Feature(Base):
    __tablename__ = "features"

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String, nullable=False)  # design, content, analytics, integrations, locations, support
    base_price = Column(Numeric(10, 2), nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    tier_features = relationship("TierFeature", back_populates="feature")


class TierFeature(Base):
    """A feature offered under a tier, optionally included and/or discounted."""

    __tablename__ = "tier_features"
    __table_args__ = (
        UniqueConstraint("tier_id", "feature_id", name="uq_tier_features_tier_feature"),
        CheckConstraint(
            "discount_percentage >= 0 AND discount_percentage <= 100",
            name="ck_tier_features_discount_range",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tier_id = Column(Integer, ForeignKey("tiers.id", ondelete="CASCADE"), nullable=False, index=True)
    feature_id = Column(Integer, ForeignKey("features.id", ondelete="CASCADE"), nullable=False, index=True)
    included_by_default = Column(Boolean, nullable=False, default=False)
    discount_percentage = Column(Numeric(5, 2), nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    # Relationships
    tier = relationship("Tier", back_populates="tier_features")
    feature = relationship("Feature", back_populates="tier_features")
