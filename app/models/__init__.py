from .base import Base, TimestampMixin
from .category import Category
from .product import Product
from .product_image import ProductImage

__all__ = [
    "Base",
    "TimestampMixin",
    "Category",
    "Product",
    "ProductImage",
]
