import logging
import math
from dataclasses import dataclass
from io import BytesIO

from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from app.core.config import Settings, get_settings
from app.core.storage import BlobStore, StorageError, generate_key, key_from_reference
from app.models import Category, Product, ProductImage
from app.schemas.catalog import ProductCreate, ProductUpdate, format_product_datetime

from . import exceptions

logger = logging.getLogger(__name__)

# Pillow format name -> stored file extension.
ALLOWED_IMAGE_FORMATS = {"JPEG": ".jpg", "PNG": ".png", "GIF": ".gif"}


@dataclass
class UploadedImage:
    filename: str
    content: bytes
    content_type: str | None = None

    @property
    def size(self) -> int:
        return len(self.content)


def detect_image_format(content: bytes) -> str | None:
    """Return the Pillow format name when ``content`` decodes as an image."""

    try:
        with Image.open(BytesIO(content)) as img:
            image_format = img.format
            img.verify()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError):
        return None
    return image_format


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class ProductService:
    def __init__(self, db: Session, storage: BlobStore, settings: Settings | None = None):
        self.db = db
        self.storage = storage
        self.settings = settings or get_settings()

    def list_products(self, *, search: str | None = None, category: str | None = None, page: int = 1) -> dict:
        query = self.db.query(Product)
        if search:
            pattern = f"%{_escape_like(search)}%"
            query = query.filter(
                or_(
                    Product.name.ilike(pattern, escape="\\"),
                    Product.description.ilike(pattern, escape="\\"),
                )
            )
        if category:
            query = query.filter(Product.category == category)

        per_page = self.settings.PRODUCTS_PER_PAGE
        page = max(page, 1)
        total = query.count()
        offset = (page - 1) * per_page
        products = (
            query.options(selectinload(Product.images))
            # Newest first, so a freshly created product leads page one.
            .order_by(Product.id.desc())
            .offset(offset)
            .limit(per_page)
            .all()
        )
        return {
            "data": [self.serialize_product(product) for product in products],
            "total": total,
            "per_page": per_page,
            "current_page": page,
            "last_page": max(math.ceil(total / per_page), 1),
            "from": offset + 1 if products else None,
            "to": offset + len(products) if products else None,
        }

    def get_product(self, product_id: int) -> Product:
        return self._get_product(product_id)

    def create_product(self, *, data: dict, files: list[UploadedImage]) -> Product:
        errors: dict[str, list[str]] = {}
        validated = self._validate_fields(ProductCreate, data, errors)
        if validated is not None:
            self._validate_category(validated.category, errors)
        formats = self._validate_images(files, errors)
        if errors:
            logger.warning("Product creation rejected: %s", errors)
            raise exceptions.ValidationError(errors)

        product = Product(**validated.model_dump())
        self.db.add(product)
        stored: list[str] = []
        try:
            self.db.flush()
            self._attach_images(product, files, formats, stored)
            self.db.commit()
        except StorageError as exc:
            self._rollback(stored)
            logger.error("Image upload failed while creating product: %s", exc)
            raise exceptions.UploadError("Error creating product", detail=str(exc)) from exc
        except SQLAlchemyError as exc:
            self._rollback(stored)
            logger.exception("Database error while creating product")
            raise exceptions.InternalError("Error creating product", detail=str(exc)) from exc

        self.db.refresh(product)
        logger.info("Product %s created with %d image(s)", product.id, len(stored))
        return product

    def update_product(
        self,
        *,
        product_id: int,
        data: dict,
        files: list[UploadedImage],
        retained_paths: list[str] | None = None,
    ) -> Product:
        product = self._get_product(product_id)

        errors: dict[str, list[str]] = {}
        validated = self._validate_fields(ProductUpdate, data, errors)
        updates = validated.model_dump(exclude_unset=True) if validated is not None else {}
        if "category" in updates:
            self._validate_category(updates["category"], errors)
        formats = self._validate_images(files, errors)
        if errors:
            logger.warning("Product %s update rejected: %s", product_id, errors)
            raise exceptions.ValidationError(errors)

        for key, value in updates.items():
            setattr(product, key, value)

        stored: list[str] = []
        removed: list[str] = []
        try:
            self._attach_images(product, files, formats, stored)
            if retained_paths is not None:
                keep = {key for key in (key_from_reference(path) for path in retained_paths) if key}
                for image in list(product.images):
                    if image.path in stored or image.path in keep:
                        continue
                    product.images.remove(image)
                    removed.append(image.path)
            self.db.add(product)
            self.db.commit()
        except StorageError as exc:
            self._rollback(stored)
            logger.error("Image upload failed while updating product %s: %s", product_id, exc)
            raise exceptions.UploadError("Error updating product", detail=str(exc)) from exc
        except SQLAlchemyError as exc:
            self._rollback(stored)
            logger.exception("Database error while updating product %s", product_id)
            raise exceptions.InternalError("Error updating product", detail=str(exc)) from exc

        self._discard_blobs(removed, product_id=product_id)
        self.db.refresh(product)
        logger.info(
            "Product %s updated: fields=%s added=%d removed=%d",
            product_id,
            sorted(updates),
            len(stored),
            len(removed),
        )
        return product

    def delete_product(self, product_id: int) -> None:
        product = self._get_product(product_id)
        paths = [image.path for image in product.images]
        try:
            self.db.delete(product)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Database error while deleting product %s", product_id)
            raise exceptions.InternalError("Error deleting product", detail=str(exc)) from exc
        self._discard_blobs(paths, product_id=product_id)
        logger.info("Product %s deleted", product_id)

    def serialize_product(self, product: Product) -> dict:
        return {
            "id": product.id,
            "name": product.name,
            "category": product.category,
            "description": product.description,
            "datetime": format_product_datetime(product.datetime),
            "created_at": product.created_at,
            "updated_at": product.updated_at,
            "images": [self._serialize_image(image) for image in product.images],
        }

    def _serialize_image(self, image: ProductImage) -> dict:
        return {
            "id": image.id,
            "product_id": image.product_id,
            "path": image.path,
            "url": self.storage.url_for(image.path),
        }

    def _get_product(self, product_id: int) -> Product:
        product = (
            self.db.query(Product)
            .options(selectinload(Product.images))
            .filter(Product.id == product_id)
            .first()
        )
        if not product:
            logger.info("Product %s not found", product_id)
            raise exceptions.NotFoundError("Product not found", detail="The requested product does not exist")
        return product

    @staticmethod
    def _validate_fields(schema: type[BaseModel], data: dict, errors: dict[str, list[str]]):
        try:
            return schema.model_validate(data)
        except PydanticValidationError as exc:
            for error in exc.errors():
                field = str(error["loc"][0]) if error["loc"] else "payload"
                errors.setdefault(field, []).append(error["msg"])
            return None

    def _validate_category(self, category: str, errors: dict[str, list[str]]) -> None:
        if not self.settings.STRICT_CATEGORIES:
            return
        exists = self.db.query(Category.id).filter(Category.name == category).first()
        if exists is None:
            errors.setdefault("category", []).append("The selected category is invalid.")

    def _validate_images(self, files: list[UploadedImage], errors: dict[str, list[str]]) -> list[str]:
        max_kb = self.settings.MAX_IMAGE_SIZE_KB
        formats: list[str] = []
        for index, upload in enumerate(files):
            field = f"images.{index}"
            image_format = detect_image_format(upload.content) if upload.content else None
            if image_format not in ALLOWED_IMAGE_FORMATS:
                errors.setdefault(field, []).append("The image must be a file of type: jpeg, png, jpg, gif.")
            if upload.size > max_kb * 1024:
                errors.setdefault(field, []).append(f"The image may not be greater than {max_kb} kilobytes.")
            formats.append(image_format or "")
        return formats

    def _attach_images(
        self,
        product: Product,
        files: list[UploadedImage],
        formats: list[str],
        stored: list[str],
    ) -> None:
        for index, (upload, image_format) in enumerate(zip(files, formats), start=1):
            key = generate_key(ALLOWED_IMAGE_FORMATS[image_format])
            try:
                path = self.storage.put(key, upload.content)
            except StorageError as exc:
                raise StorageError(f"Failed to upload image {index}: {exc}") from exc
            stored.append(path)
            product.images.append(ProductImage(path=path))
            logger.debug("Stored image %d (%s, %d bytes) at %s", index, upload.filename, upload.size, path)

    def _rollback(self, stored: list[str]) -> None:
        self.db.rollback()
        self._discard_blobs(stored)

    def _discard_blobs(self, paths: list[str], *, product_id: int | None = None) -> None:
        for path in paths:
            try:
                self.storage.delete(path)
            except (StorageError, OSError) as exc:
                logger.warning("Failed to delete image file %s (product=%s): %s", path, product_id, exc)
