"""Restaurant subscriptions, their purchased features and the change ledger."""

from sqlalchemy import Column, Integer, Boolean, DateTime, Numeric, Text, ForeignKey, Index, func, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
import uuid
import enum
from datetime import datetime

from app.core.database import Base
from app.models.types import JSONType, enum_type


class BillingCycle(str, enum.Enum):
    MONTHLY = "monthly"
    ANNUAL = "annual"


class ChangeType(str, enum.Enum):
    TIER_CHANGE = "tier_change"
    FEATURE_ADDED = "feature_added"
    FEATURE_REMOVED = "feature_removed"
    RENEWAL = "renewal"
    CANCELLATION = "cancellation"


class Subscription(Base):
    __tablename__ = "restaurant_subscriptions"
    __table_args__ = (
        # At most one active subscription per restaurant
        Index(
            "uq_restaurant_subscriptions_one_active", "restaurant_id",
            unique=True, postgresql_where=text("active"), sqlite_where=text("active"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    restaurant_id = Column(UUID(as_uuid=True), ForeignKey("restaurants.id"), nullable=False, index=True)
    tier_id = Column(Integer, ForeignKey("tiers.id"), nullable=False)
    billing_cycle = Column(
        enum_type(BillingCycle, "billing_cycle_enum"),
        nullable=False,
        default=BillingCycle.MONTHLY,
    )
    active = Column(Boolean, nullable=False, default=True)
    started_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    expires_at = Column(DateTime, nullable=True)
    next_billing_date = Column(DateTime, nullable=True)
    # Start of the current cycle and how many cycles have completed since started_at
    current_period_start = Column(DateTime, nullable=True)
    renewal_count = Column(Integer, nullable=False, default=0)
    auto_renew = Column(Boolean, nullable=False, default=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    restaurant = relationship("Restaurant", back_populates="subscriptions")
    tier = relationship("Tier", back_populates="subscriptions")
    features = relationship("SubscriptionFeature", back_populates="subscription")
    changes = relationship("SubscriptionChange", back_populates="subscription")
    invoices = relationship("Invoice", back_populates="subscription")

    @property
    def is_pending_cancellation(self) -> bool:
        """Cancelled, but service continues until the period ends."""
        return bool(self.active and self.cancelled_at is not None)

    @property
    def state(self) -> str:
        if not self.active:
            return "inactive"
        if self.cancelled_at is not None:
            return "cancelled_pending_expiry"
        return "active"


class SubscriptionFeature(Base):
    """A feature purchased on a subscription.

    price_at_purchase is frozen when the row is created; removal only flips
    is_active and stamps removed_at so the history is kept.
    """

    __tablename__ = "subscription_features"
    __table_args__ = (
        Index(
            "uq_subscription_features_one_active", "subscription_id", "feature_id",
            unique=True, postgresql_where=text("is_active"), sqlite_where=text("is_active"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    subscription_id = Column(
        UUID(as_uuid=True), ForeignKey("restaurant_subscriptions.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    feature_id = Column(Integer, ForeignKey("features.id"), nullable=False, index=True)
    added_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    removed_at = Column(DateTime, nullable=True)
    price_at_purchase = Column(Numeric(10, 2), nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    # Relationships
    subscription = relationship("Subscription", back_populates="features")
    feature = relationship("Feature")


class SubscriptionChange(Base):
    """Append-only ledger entry describing one subscription mutation."""

    __tablename__ = "subscription_changes"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    subscription_id = Column(
        UUID(as_uuid=True), ForeignKey("restaurant_subscriptions.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    change_type = Column(
        enum_type(ChangeType, "subscription_change_type_enum"),
        nullable=False,
    )
    previous_value = Column(JSONType, nullable=True)
    new_value = Column(JSONType, nullable=True)
    amount_adjustment = Column(Numeric(10, 2), nullable=False, default=0)
    prorated_amount = Column(Numeric(10, 2), nullable=False, default=0)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    # Relationships
    subscription = relationship("Subscription", back_populates="changes")
