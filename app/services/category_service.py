import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.cache import cache, invalidate_cache
from app.models import Category

from . import exceptions

logger = logging.getLogger(__name__)

CATEGORY_NAMESPACE = "categories"


class CategoryService:
    def __init__(self, db: Session):
        self.db = db

    @cache(ttl=300, namespace=CATEGORY_NAMESPACE, key_builder=lambda self: "all")
    def list_categories(self) -> list[dict]:
        try:
            categories = self.db.query(Category).order_by(Category.name).all()
        except SQLAlchemyError as exc:
            logger.exception("Error fetching categories")
            raise exceptions.InternalError("Error fetching categories", detail=str(exc)) from exc
        return [{"id": category.id, "name": category.name} for category in categories]

    def ensure_categories(self, names: list[str]) -> int:
        """Insert any missing category names; returns how many were created."""

        existing = {name for (name,) in self.db.query(Category.name).all()}
        created = 0
        for name in names:
            if name in existing:
                continue
            self.db.add(Category(name=name))
            existing.add(name)
            created += 1
        if created:
            self.db.flush()
            invalidate_cache(CATEGORY_NAMESPACE)
        return created
