"""Public catalog endpoints: tiers and features."""

import logging
from typing import List
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.schemas.catalog import AvailableFeatureOut, FeatureOut, TierOut
from app.services import catalog

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/tiers", response_model=List[TierOut])
async def list_tiers(db: AsyncSession = Depends(get_db)):
    """Active tiers ordered for display, each with its offered features."""
    return await catalog.list_active_tiers(db)


@router.get("/tiers/{tier_id}", response_model=TierOut)
async def get_tier(tier_id: int, db: AsyncSession = Depends(get_db)):
    return await catalog.get_tier_with_features(db, tier_id)


@router.get("/tiers/{tier_id}/features", response_model=List[AvailableFeatureOut])
async def list_tier_features(tier_id: int, db: AsyncSession = Depends(get_db)):
    """Features offered under a tier with the tier discount applied."""
    return await catalog.list_features_for_tier(db, tier_id)


@router.get("/features", response_model=List[FeatureOut])
async def list_features(db: AsyncSession = Depends(get_db)):
    return await catalog.list_active_features(db)
