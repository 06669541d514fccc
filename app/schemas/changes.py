"""Typed payloads for the subscription change ledger.

Each change_type carries its own previous/new snapshot shape. They are stored
as JSON in ``subscription_changes.previous_value`` / ``new_value`` and parsed
back through ``ChangeDetails`` when the history is read.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, List, Literal, Optional, Union
from pydantic import BaseModel, Field, TypeAdapter


class TierSnapshot(BaseModel):
    tier_id: int
    tier_name: str


class TierChangeResult(TierSnapshot):
    activated_feature_ids: List[int] = []
    deactivated_feature_ids: List[int] = []


class FeaturePurchase(BaseModel):
    feature_id: int
    feature_key: str
    price_at_purchase: Decimal
    # Tier-discounted catalog price; None when the tier no longer offers the feature
    list_price: Optional[Decimal] = None
    prorated: bool = False


class FeatureRemoval(BaseModel):
    feature_id: int
    refund_amount: Decimal
    prorated: bool = False


class BillingState(BaseModel):
    active: bool
    auto_renew: bool
    next_billing_date: Optional[datetime] = None


class CancellationState(BillingState):
    reason: Optional[str] = None


class TierChanged(BaseModel):
    change_type: Literal["tier_change"] = "tier_change"
    previous_value: TierSnapshot
    new_value: TierChangeResult


class FeatureAdded(BaseModel):
    change_type: Literal["feature_added"] = "feature_added"
    previous_value: None = None
    new_value: FeaturePurchase


class FeatureRemoved(BaseModel):
    change_type: Literal["feature_removed"] = "feature_removed"
    previous_value: FeaturePurchase
    new_value: FeatureRemoval


class Renewed(BaseModel):
    """Cycle advanced by the renewal scheduler, or auto-renew switched back on."""
    change_type: Literal["renewal"] = "renewal"
    previous_value: BillingState
    new_value: BillingState


class Cancelled(BaseModel):
    """Cancellation requested, or the cancelled subscription reached period end."""
    change_type: Literal["cancellation"] = "cancellation"
    previous_value: BillingState
    new_value: CancellationState


ChangeDetails = Annotated[
    Union[TierChanged, FeatureAdded, FeatureRemoved, Renewed, Cancelled],
    Field(discriminator="change_type"),
]

change_details_adapter = TypeAdapter(ChangeDetails)


class SubscriptionChangeOut(BaseModel):
    """One ledger entry as returned by the history endpoint."""
    id: str
    subscription_id: str
    change_type: str
    details: ChangeDetails
    amount_adjustment: float
    prorated_amount: float
    notes: Optional[str] = None
    created_at: datetime
