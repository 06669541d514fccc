"""
Application configuration.

Everything is read from environment variables, falling back to a local
.env file so development works without exporting anything.
"""
import logging
from decimal import Decimal
from typing import Literal

from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str
    DB_ECHO: bool = False

    # Identity provider (Supabase-style HS256 access tokens)
    AUTH_JWT_SECRET: str = ""
    AUTH_JWT_ALGORITHM: str = "HS256"
    AUTH_JWT_AUDIENCE: str = "authenticated"

    CORS_ORIGINS: list[str] = ["http://localhost:5173"]

    # Billing policy
    BILLING_TAX_RATE: Decimal = Decimal("0")
    INVOICE_GRACE_PERIOD_DAYS: int = 7
    INVOICE_NUMBER_PREFIX: str = "INV"
    PRORATION_DAY_COUNT: Literal["actual", "30/360"] = "actual"

    # Insert the default tiers/features on startup when the catalog is empty
    SEED_CATALOG: bool = True

    class Config:
        env_file = ".env"


settings = Settings()

# Validate critical security settings
if not settings.AUTH_JWT_SECRET:
    raise ValueError(
        "AUTH_JWT_SECRET is not set. Use the JWT secret of the identity provider "
        "project (Supabase: Settings → API → JWT Secret)."
    )

if settings.BILLING_TAX_RATE < 0:
    raise ValueError("BILLING_TAX_RATE must not be negative")
