"""Database initialization module.

Creates any missing tables on app startup. Alembic revisions under
``alembic/versions`` describe the same schema for managed deployments.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError

from app.models import Base

from .db import get_engine

logger = logging.getLogger(__name__)


def init_database_schema() -> None:
    """Create catalog tables that do not exist yet (idempotent)."""

    engine = get_engine()
    try:
        Base.metadata.create_all(bind=engine)
    except SQLAlchemyError as exc:
        logger.error("Failed to initialize database schema: %s", exc)
        raise
    logger.info("Database schema initialized (%s)", engine.url.render_as_string(hide_password=True))
