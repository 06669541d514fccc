"""FastAPI dependencies for authentication and ownership checks."""

from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.models.restaurant import Restaurant
from app.models.subscription import Subscription
from app.models.user import UserProfile, UserRole
from app.services.auth import decode_access_token, get_user_profile
from app.services.queries import get_restaurant_or_404, get_subscription_or_404

security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> UserProfile:
    """Extract and validate the bearer token, return the caller's profile."""

    payload = decode_access_token(credentials.credentials)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id_str: str | None = payload.get("sub")
    if user_id_str is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload"
        )

    try:
        user_id = UUID(user_id_str)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user ID in token"
        )

    user = await get_user_profile(db, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User profile not found"
        )

    return user


def require_role(*roles: UserRole):
    """Dependency factory that checks if user has one of the required roles.

    Usage:
        require_admin = require_role(UserRole.PLATFORM_ADMIN)

        @router.post("/admin-only")
        async def admin_route(user: UserProfile = Depends(require_admin)):
            ...
    """
    async def role_checker(current_user: UserProfile = Depends(get_current_user)) -> UserProfile:
        if current_user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {', '.join(r.value for r in roles)}"
            )
        return current_user

    return role_checker


# Pre-configured role dependencies
require_admin = require_role(UserRole.PLATFORM_ADMIN)


def _ensure_owner(user: UserProfile, restaurant: Restaurant) -> None:
    if user.is_admin or restaurant.owner_id == user.id:
        return
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="You do not have access to this restaurant"
    )


async def authorize_restaurant(db: AsyncSession, user: UserProfile, restaurant_id: UUID) -> Restaurant:
    """The restaurant, if the caller owns it or is a platform admin."""
    restaurant = await get_restaurant_or_404(db, restaurant_id)
    _ensure_owner(user, restaurant)
    return restaurant


async def authorize_subscription(db: AsyncSession, user: UserProfile, subscription_id: UUID) -> Subscription:
    """The subscription, if the caller owns its restaurant or is a platform admin."""
    subscription = await get_subscription_or_404(db, subscription_id)
    restaurant = await get_restaurant_or_404(db, subscription.restaurant_id)
    _ensure_owner(user, restaurant)
    return subscription
