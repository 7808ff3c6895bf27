import logging

from sqlalchemy.exc import IntegrityError

from app.core.config import get_settings
from app.core.db import session_scope

from .category_service import CategoryService

logger = logging.getLogger(__name__)


def ensure_default_categories() -> None:
    """Seed the reference categories defined via DEFAULT_CATEGORIES."""

    names = get_settings().default_categories
    if not names:
        logger.warning("Default category bootstrap skipped: DEFAULT_CATEGORIES is empty")
        return

    try:
        with session_scope() as db:
            created = CategoryService(db).ensure_categories(names)
    except IntegrityError:
        logger.warning("Category bootstrap hit an integrity error. Another process may have seeded them.")
        return
    if created:
        logger.info("Seeded %d default categories", created)
