from .catalog import (
    CategoryRead,
    ProductCreate,
    ProductImageRead,
    ProductListResponse,
    ProductPage,
    ProductRead,
    ProductUpdate,
)
from .common import ErrorResponse, HealthStatus, MessageResponse

__all__ = [
    "CategoryRead",
    "ProductCreate",
    "ProductImageRead",
    "ProductListResponse",
    "ProductPage",
    "ProductRead",
    "ProductUpdate",
    "ErrorResponse",
    "HealthStatus",
    "MessageResponse",
]
