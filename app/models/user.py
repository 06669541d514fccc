"""User profile mirrored from the identity provider.

The identity provider owns credentials; this table only holds the role used
for authorization. ``id`` is the ``sub`` claim of the access token.
"""

from sqlalchemy import Column, String, DateTime
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from datetime import datetime
from enum import Enum
from app.core.database import Base
from app.models.types import enum_type


class UserRole(str, Enum):
    PLATFORM_ADMIN = "platform_admin"
    RESTAURANT_OWNER = "restaurant_owner"


class UserProfile(Base):
    __tablename__ = "user_profiles"

    id = Column(UUID(as_uuid=True), primary_key=True)
    email = Column(String, unique=True, index=True, nullable=True)
    role = Column(
        enum_type(UserRole, "user_role_enum"),
        nullable=False,
        default=UserRole.RESTAURANT_OWNER,
    )
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    restaurants = relationship("Restaurant", back_populates="owner")

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.PLATFORM_ADMIN
