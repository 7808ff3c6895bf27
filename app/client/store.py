import logging
import re
from datetime import datetime
from typing import Any, Optional

import anyio
import httpx

from app.schemas.catalog import parse_product_datetime

from .api import ApiError, CatalogApiClient, ValidationError
from .compression import CompressionError, ImageFile, compress_image_async

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = {
    "name": "Name is required",
    "category": "Category is required",
    "description": "Description is required",
    "datetime": "Date and time is required",
}
NAME_MAX_LENGTH = 255
_STORAGE_PREFIX = re.compile(r"^products/")


def _field_value(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def validate_product(product: dict, *, partial: bool = False) -> dict[str, list[str]]:
    """Apply the server's field rules locally; ``partial`` only checks the fields present."""

    errors: dict[str, list[str]] = {}
    for field, message in REQUIRED_FIELDS.items():
        value = product.get(field)
        if partial and value is None:
            continue
        if isinstance(value, str):
            value = value.strip()
        if value in (None, ""):
            errors[field] = [message]
        elif field == "name" and len(str(value)) > NAME_MAX_LENGTH:
            errors[field] = [f"Name may not be greater than {NAME_MAX_LENGTH} characters"]
        elif field == "datetime":
            try:
                parse_product_datetime(value)
            except ValueError:
                errors[field] = ["Date and time is not a valid date"]
    return errors


async def prepare_images(images: list[ImageFile]) -> list[ImageFile]:
    """Compress oversized images concurrently, preserving order."""

    results: list[Optional[ImageFile]] = [None] * len(images)

    async def _compress(index: int, image: ImageFile) -> None:
        results[index] = await compress_image_async(image)

    async with anyio.create_task_group() as tg:
        for index, image in enumerate(images):
            tg.start_soon(_compress, index, image)
    return [image for image in results if image is not None]


class ProductStore:
    """UI-facing product and category state backed by :class:`CatalogApiClient`."""

    def __init__(self, api: CatalogApiClient):
        self.api = api
        self.products: list[dict] = []
        self.categories: list[str] = []
        self.search_query = ""
        self.selected_category = ""
        self.current_page = 1
        self.total_pages = 0
        self.loading = False

    async def fetch_products(self) -> None:
        self.loading = True
        try:
            response = await self.api.list_products(
                search=self.search_query,
                category=self.selected_category,
                page=self.current_page,
            )
            page = response.get("products") or {}
            self.products = page.get("data") or []
            self.total_pages = page.get("last_page", 0)
        except (ApiError, httpx.HTTPError) as exc:
            logger.error("Error fetching products: %s", exc)
        finally:
            self.loading = False

    async def fetch_categories(self) -> None:
        try:
            categories = await self.api.list_categories()
        except (ApiError, httpx.HTTPError) as exc:
            logger.error("Error fetching categories: %s", exc)
            return
        self.categories = [category["name"] for category in categories]

    async def get_product(self, product_id: int) -> dict:
        self.loading = True
        try:
            return await self.api.get_product(product_id)
        except (ApiError, httpx.HTTPError) as exc:
            logger.error("Error fetching product %s: %s", product_id, exc)
            raise
        finally:
            self.loading = False

    async def create_product(self, product: dict) -> dict:
        errors = validate_product(product)
        if errors:
            raise ValidationError(errors)

        self.loading = True
        try:
            fields = {field: _field_value(product[field]) for field in REQUIRED_FIELDS}
            images = await prepare_images(list(product.get("new_images") or []))
            created = await self.api.create_product(fields, images)
        except (ApiError, CompressionError, httpx.HTTPError) as exc:
            logger.error("Error creating product: %s", exc)
            raise
        finally:
            self.loading = False

        self.products.insert(0, created)
        return created

    async def update_product(self, product: dict) -> dict:
        product_id = product["id"]
        errors = validate_product(product, partial=True)
        if errors:
            raise ValidationError(errors)

        self.loading = True
        try:
            fields = {
                field: _field_value(product[field])
                for field in REQUIRED_FIELDS
                if product.get(field) is not None
            }
            existing = product.get("existing_images")
            retained = None
            if existing is not None:
                retained = [_STORAGE_PREFIX.sub("", path) for path in existing]
            images = await prepare_images(list(product.get("new_images") or []))
            updated = await self.api.update_product(product_id, fields, images, retained)
        except (ApiError, CompressionError, httpx.HTTPError) as exc:
            logger.error("Error updating product %s: %s", product_id, exc)
            raise
        finally:
            self.loading = False

        for index, item in enumerate(self.products):
            if item.get("id") == updated.get("id"):
                self.products[index] = updated
                break
        return updated

    async def delete_product(self, product_id: int) -> dict:
        self.loading = True
        try:
            return await self.api.delete_product(product_id)
        except (ApiError, httpx.HTTPError) as exc:
            logger.error("Error deleting product %s: %s", product_id, exc)
            raise
        finally:
            self.loading = False

    async def set_search_query(self, query: str) -> None:
        self.search_query = query
        self.current_page = 1
        await self.fetch_products()

    async def set_category(self, category: str) -> None:
        self.selected_category = category
        self.current_page = 1
        await self.fetch_products()

    async def set_page(self, page: int) -> None:
        self.current_page = page
        await self.fetch_products()
