"""Async database engine, session factory and transaction helper."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from app.core.config import settings
from app.core.exceptions import BillingError, StorageFailure

logger = logging.getLogger(__name__)

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DB_ECHO,
    pool_pre_ping=True,
)

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a request-scoped session."""
    async with async_session() as session:
        yield session


@asynccontextmanager
async def unit_of_work(db: AsyncSession, operation: str) -> AsyncGenerator[AsyncSession, None]:
    """Run a multi-step mutation as one all-or-nothing transaction.

    Commits when the block exits cleanly. Any error rolls back everything
    written inside the block; SQLAlchemy errors are re-raised as
    StorageFailure so driver details never reach the caller.
    """
    try:
        yield db
        await db.commit()
    except BillingError:
        await db.rollback()
        raise
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Storage failure during %s: %s", operation, e)
        raise StorageFailure(f"Could not complete {operation}; no changes were saved") from e
    except Exception:
        await db.rollback()
        raise
