"""Pydantic schemas for subscriptions, pricing and limits."""

from datetime import datetime
from typing import Optional, List
from uuid import UUID
from pydantic import BaseModel, Field

from app.models.subscription import BillingCycle


class CreateSubscriptionRequest(BaseModel):
    restaurant_id: UUID
    tier_id: int
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    feature_ids: List[int] = Field(default_factory=list, description="Extra features to purchase up front")


class AddFeatureRequest(BaseModel):
    feature_id: int
    prorated: bool = False


class ChangeTierRequest(BaseModel):
    new_tier_id: int
    prorated: bool = True


class CancelSubscriptionRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class ActiveFeatureOut(BaseModel):
    """A feature currently active on a subscription."""
    subscription_feature_id: UUID
    feature_id: int
    feature_key: str
    feature_name: str
    price: float
    added_at: datetime


class SubscriptionWithPricingOut(BaseModel):
    """Subscription joined with its tier and current monthly total."""
    subscription_id: UUID
    restaurant_id: UUID
    restaurant_name: str
    tier_id: int
    tier_name: str
    tier_base_price: float
    billing_cycle: BillingCycle
    state: str
    started_at: datetime
    expires_at: Optional[datetime]
    next_billing_date: Optional[datetime]
    active: bool
    auto_renew: bool
    cancelled_at: Optional[datetime]
    cancellation_reason: Optional[str]
    monthly_total: float
    active_features_count: int
    active_features: List[ActiveFeatureOut]


class AddFeatureOut(BaseModel):
    subscription_feature_id: UUID
    subscription: SubscriptionWithPricingOut


class FeaturePriceDetail(BaseModel):
    feature_name: str
    price: float


class PricingBreakdownOut(BaseModel):
    tier_base_price: float
    features_total: float
    additional_menus_cost: float
    subtotal: float
    tax: float
    total: float
    features_detail: List[FeaturePriceDetail]


class SubscriptionLimitsOut(BaseModel):
    max_menus: int
    current_menus: int
    can_create_more: bool
    additional_menu_price: float
    allows_pdf: bool
    allows_custom_fonts: bool
    allows_images: bool
    allows_multiple_locations: bool


class MessageResponse(BaseModel):
    """Generic message response."""
    message: str


class FeatureRemovalOut(BaseModel):
    refund_amount: float
    subscription: SubscriptionWithPricingOut


class TierChangeOut(BaseModel):
    amount_adjustment: float
    subscription: SubscriptionWithPricingOut
