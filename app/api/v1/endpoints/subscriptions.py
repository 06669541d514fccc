"""Subscription endpoints: lifecycle, pricing, limits, history and invoices."""

import logging
from typing import List, Optional
from uuid import UUID
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.dependencies import (
    authorize_restaurant, authorize_subscription, get_current_user, require_admin,
)
from app.models.user import UserProfile
from app.schemas.catalog import FeatureValidationOut
from app.schemas.changes import SubscriptionChangeOut
from app.schemas.invoice import GenerateInvoiceRequest, InvoiceOut
from app.schemas.subscription import (
    ActiveFeatureOut, AddFeatureOut, AddFeatureRequest, CancelSubscriptionRequest,
    ChangeTierRequest, CreateSubscriptionRequest, FeatureRemovalOut, PricingBreakdownOut,
    SubscriptionLimitsOut, SubscriptionWithPricingOut, TierChangeOut,
)
from app.services import catalog, history, invoices, pricing, subscriptions

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/", response_model=SubscriptionWithPricingOut, status_code=status.HTTP_201_CREATED)
async def create_subscription(
    body: CreateSubscriptionRequest,
    current_user: UserProfile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Subscribe a restaurant to a tier, optionally buying extra features."""
    await authorize_restaurant(db, current_user, body.restaurant_id)
    subscription = await subscriptions.create_subscription(
        db,
        restaurant_id=body.restaurant_id,
        tier_id=body.tier_id,
        billing_cycle=body.billing_cycle,
        feature_ids=body.feature_ids,
    )
    return await subscriptions.get_subscription_with_pricing(db, subscription.id)


@router.get("/restaurant/{restaurant_id}", response_model=List[SubscriptionWithPricingOut])
async def list_restaurant_subscriptions(
    restaurant_id: UUID,
    current_user: UserProfile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await authorize_restaurant(db, current_user, restaurant_id)
    return await subscriptions.list_restaurant_subscriptions(db, restaurant_id)


@router.get("/restaurant/{restaurant_id}/active", response_model=Optional[SubscriptionWithPricingOut])
async def get_active_subscription(
    restaurant_id: UUID,
    current_user: UserProfile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """The restaurant's active subscription, or null when it has none."""
    await authorize_restaurant(db, current_user, restaurant_id)
    subscription = await subscriptions.get_active_subscription(db, restaurant_id)
    if subscription is None:
        return None
    return await subscriptions.build_subscription_view(db, subscription)


@router.get("/{subscription_id}", response_model=SubscriptionWithPricingOut)
async def get_subscription(
    subscription_id: UUID,
    current_user: UserProfile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    subscription = await authorize_subscription(db, current_user, subscription_id)
    return await subscriptions.build_subscription_view(db, subscription)


@router.get("/{subscription_id}/pricing", response_model=PricingBreakdownOut)
async def get_pricing(
    subscription_id: UUID,
    current_user: UserProfile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Monthly total broken down into tier, features and extra menus."""
    await authorize_subscription(db, current_user, subscription_id)
    breakdown = await pricing.get_pricing_breakdown(db, subscription_id)
    return breakdown.as_dict()


@router.get("/{subscription_id}/limits", response_model=SubscriptionLimitsOut)
async def get_limits(
    subscription_id: UUID,
    current_user: UserProfile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await authorize_subscription(db, current_user, subscription_id)
    return await pricing.get_limits(db, subscription_id)


@router.get("/{subscription_id}/features", response_model=List[ActiveFeatureOut])
async def list_subscription_features(
    subscription_id: UUID,
    current_user: UserProfile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await authorize_subscription(db, current_user, subscription_id)
    return await subscriptions.list_active_features(db, subscription_id)


@router.post("/{subscription_id}/features/validate", response_model=FeatureValidationOut)
async def validate_feature(
    subscription_id: UUID,
    body: AddFeatureRequest,
    current_user: UserProfile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Check whether a feature can be added, and at what price, without adding it."""
    await authorize_subscription(db, current_user, subscription_id)
    return await catalog.validate_feature_addition(db, subscription_id, body.feature_id, body.prorated)


@router.post("/{subscription_id}/features", response_model=AddFeatureOut, status_code=status.HTTP_201_CREATED)
async def add_feature(
    subscription_id: UUID,
    body: AddFeatureRequest,
    current_user: UserProfile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await authorize_subscription(db, current_user, subscription_id)
    purchase = await subscriptions.add_feature(db, subscription_id, body.feature_id, body.prorated)
    return AddFeatureOut(
        subscription_feature_id=purchase.id,
        subscription=await subscriptions.get_subscription_with_pricing(db, subscription_id),
    )


@router.delete("/{subscription_id}/features/{feature_id}", response_model=FeatureRemovalOut)
async def remove_feature(
    subscription_id: UUID,
    feature_id: int,
    prorated: bool = Query(True, description="Refund the unused part of the cycle"),
    current_user: UserProfile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await authorize_subscription(db, current_user, subscription_id)
    refund = await subscriptions.remove_feature(db, subscription_id, feature_id, prorated)
    return FeatureRemovalOut(
        refund_amount=refund,
        subscription=await subscriptions.get_subscription_with_pricing(db, subscription_id),
    )


@router.patch("/{subscription_id}/tier", response_model=TierChangeOut)
async def change_tier(
    subscription_id: UUID,
    body: ChangeTierRequest,
    current_user: UserProfile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Upgrade or downgrade; the price difference is prorated by default."""
    await authorize_subscription(db, current_user, subscription_id)
    adjustment = await subscriptions.change_tier(db, subscription_id, body.new_tier_id, body.prorated)
    return TierChangeOut(
        amount_adjustment=adjustment,
        subscription=await subscriptions.get_subscription_with_pricing(db, subscription_id),
    )


@router.post("/{subscription_id}/cancel", response_model=SubscriptionWithPricingOut)
async def cancel_subscription(
    subscription_id: UUID,
    body: Optional[CancelSubscriptionRequest] = None,
    current_user: UserProfile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Turn off auto-renewal. The subscription stays active until next_billing_date."""
    await authorize_subscription(db, current_user, subscription_id)
    reason = body.reason if body else None
    await subscriptions.cancel_subscription(db, subscription_id, reason)
    return await subscriptions.get_subscription_with_pricing(db, subscription_id)


@router.post("/{subscription_id}/reactivate", response_model=SubscriptionWithPricingOut)
async def reactivate_subscription(
    subscription_id: UUID,
    current_user: UserProfile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await authorize_subscription(db, current_user, subscription_id)
    await subscriptions.reactivate_subscription(db, subscription_id)
    return await subscriptions.get_subscription_with_pricing(db, subscription_id)


@router.post("/{subscription_id}/renew", response_model=SubscriptionWithPricingOut)
async def renew_subscription(
    subscription_id: UUID,
    admin: UserProfile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Run period-end processing: renew, or expire a cancelled subscription."""
    await subscriptions.process_renewal(db, subscription_id)
    return await subscriptions.get_subscription_with_pricing(db, subscription_id)


@router.get("/{subscription_id}/history", response_model=List[SubscriptionChangeOut])
async def get_history(
    subscription_id: UUID,
    current_user: UserProfile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Change ledger, newest first."""
    await authorize_subscription(db, current_user, subscription_id)
    entries = await history.get_history(db, subscription_id)
    return [history.to_change_out(entry) for entry in entries]


@router.get("/{subscription_id}/invoices", response_model=List[InvoiceOut])
async def list_invoices(
    subscription_id: UUID,
    current_user: UserProfile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await authorize_subscription(db, current_user, subscription_id)
    return await invoices.list_subscription_invoices(db, subscription_id)


@router.post("/{subscription_id}/invoices", response_model=InvoiceOut, status_code=status.HTTP_201_CREATED)
async def generate_invoice(
    subscription_id: UUID,
    body: GenerateInvoiceRequest,
    admin: UserProfile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Bill the subscription's current monthly total for the given period."""
    invoice = await invoices.generate_invoice(db, subscription_id, body.period_start, body.period_end)
    logger.info("Admin %s generated invoice %s", admin.id, invoice.invoice_number)
    return invoice
