"""Access token handling.

Tokens are issued by the identity provider (Supabase-style HS256 JWTs with
``aud = "authenticated"`` and the user id in ``sub``). This service only
verifies them; ``create_access_token`` mints compatible tokens for local
development and tests.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.user import UserProfile

logger = logging.getLogger(__name__)

ACCESS_TOKEN_EXPIRE_MINUTES = 60


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token shaped like the identity provider's."""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.setdefault("aud", settings.AUTH_JWT_AUDIENCE)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.AUTH_JWT_SECRET, algorithm=settings.AUTH_JWT_ALGORITHM)


def decode_access_token(token: str) -> Optional[dict]:
    """Decode and validate a JWT access token."""
    try:
        return jwt.decode(
            token,
            settings.AUTH_JWT_SECRET,
            algorithms=[settings.AUTH_JWT_ALGORITHM],
            audience=settings.AUTH_JWT_AUDIENCE,
        )
    except JWTError as e:
        logger.warning("JWT decode error: %s", e)
        return None


async def get_user_profile(db: AsyncSession, user_id: UUID) -> Optional[UserProfile]:
    result = await db.execute(select(UserProfile).where(UserProfile.id == user_id))
    return result.scalar_one_or_none()
