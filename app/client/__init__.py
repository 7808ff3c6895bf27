from .api import ApiError, CatalogApiClient, ClientError, ValidationError
from .compression import CompressionError, ImageFile, compress_image, compress_image_async
from .store import ProductStore

__all__ = [
    "ApiError",
    "CatalogApiClient",
    "ClientError",
    "CompressionError",
    "ImageFile",
    "ProductStore",
    "ValidationError",
    "compress_image",
    "compress_image_async",
]
