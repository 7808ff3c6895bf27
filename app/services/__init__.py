from .category_service import CategoryService
from .product_service import ProductService, UploadedImage

__all__ = [
    "CategoryService",
    "ProductService",
    "UploadedImage",
]
