"""Logging setup for the API process."""

import logging

from app.core.config import settings


def configure_logging() -> None:
    """Configure root logging once at startup.

    uvicorn installs its own handlers for its access/error loggers; this only
    covers the application loggers (``app.*``).
    """
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    )
    if settings.DB_ECHO:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)
