"""Column types shared by the billing models."""

from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import JSON

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def enum_type(enum_cls, name: str) -> SQLEnum:
    """Enum column storing member values ("monthly") rather than names ("MONTHLY")."""
    return SQLEnum(enum_cls, name=name, values_callable=lambda e: [m.value for m in e])
