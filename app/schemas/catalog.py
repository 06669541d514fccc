"""Pydantic schemas for the tier/feature catalog."""

from typing import Optional, List
from pydantic import BaseModel


class AvailableFeatureOut(BaseModel):
    """A feature as offered under one tier, with the tier discount applied."""
    tier_id: int
    feature_id: int
    feature_key: str
    feature_name: str
    feature_description: Optional[str] = None
    feature_category: str
    base_price: float
    included_by_default: bool
    discount_percentage: float
    final_price: float


class TierOut(BaseModel):
    """A tier with its capability flags and the features it offers."""
    tier_id: int
    tier_name: str
    tier_description: Optional[str] = None
    tier_base_price: float
    max_menus: int
    price_per_additional_menu: float
    allows_pdf: bool
    allows_custom_fonts: bool
    allows_images: bool
    allows_multiple_locations: bool
    sort_order: int
    features: List[AvailableFeatureOut] = []


class FeatureOut(BaseModel):
    """Catalog feature, independent of any tier."""
    id: int
    key: str
    name: str
    description: Optional[str] = None
    category: str
    base_price: float
    active: bool

    class Config:
        from_attributes = True


class FeatureValidationOut(BaseModel):
    """Pre-flight answer to "can this feature be added right now?"."""
    can_add: bool
    reason: Optional[str] = None
    estimated_price: float = 0
    discount_applied: Optional[float] = None
