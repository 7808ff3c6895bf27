import datetime as dt
import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

CANONICAL_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"

# Date.toString() tail: " GMT+0800 (China Standard Time)"
_GMT_SUFFIX = re.compile(r"\s+GMT(?P<offset>[+-]\d{2}:?\d{2})?(?:\s*\(.*\))?$")

# Locale renderings produced by browsers and form widgets, tried after ISO 8601.
_LOCALE_DATETIME_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
    "%m/%d/%Y, %I:%M:%S %p",
    "%m/%d/%Y, %I:%M %p",
    "%m/%d/%Y %I:%M:%S %p",
    "%m/%d/%Y %I:%M %p",
    "%m/%d/%Y, %H:%M:%S",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y",
    "%d.%m.%Y, %H:%M:%S",
    "%d.%m.%Y %H:%M:%S",
    "%d.%m.%Y %H:%M",
    "%d.%m.%Y",
    "%a %b %d %Y %H:%M:%S %z",
    "%a %b %d %Y %H:%M:%S",
    "%Y-%m-%d %H:%M:%S %z",
    "%B %d, %Y %I:%M %p",
    "%B %d, %Y %H:%M",
    "%B %d, %Y",
    "%b %d, %Y",
)


def parse_product_datetime(value) -> dt.datetime:
    """Parse an ISO timestamp or a locale date string into a naive UTC datetime."""

    if isinstance(value, dt.datetime):
        parsed = value
    else:
        str_value = str(value).strip()
        if not str_value:
            raise ValueError("datetime is required")
        gmt = _GMT_SUFFIX.search(str_value)
        if gmt:
            str_value = f"{str_value[: gmt.start()]} {gmt.group('offset') or '+0000'}"
        parsed = None
        iso_value = str_value[:-1] + "+00:00" if str_value.endswith(("Z", "z")) else str_value
        try:
            parsed = dt.datetime.fromisoformat(iso_value)
        except ValueError:
            for fmt in _LOCALE_DATETIME_FORMATS:
                try:
                    parsed = dt.datetime.strptime(str_value, fmt)
                    break
                except ValueError:
                    continue
        if parsed is None:
            raise ValueError(
                "datetime must be an ISO timestamp (e.g. 2025-02-11T17:08:00Z) or a recognised date string"
            )
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(dt.timezone.utc).replace(tzinfo=None)
    return parsed.replace(microsecond=0)


def format_product_datetime(value: dt.datetime) -> str:
    return value.strftime(CANONICAL_DATETIME_FORMAT)


class CategoryRead(BaseModel):
    id: int
    name: str

    model_config = ConfigDict(from_attributes=True)


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    category: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    datetime: dt.datetime

    model_config = ConfigDict(str_strip_whitespace=True)

    @field_validator("datetime", mode="before")
    @classmethod
    def parse_datetime(cls, value):
        return parse_product_datetime(value)


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    category: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = Field(default=None, min_length=1)
    datetime: Optional[dt.datetime] = None

    model_config = ConfigDict(str_strip_whitespace=True)

    @field_validator("name", "category", "description", "datetime", mode="before")
    @classmethod
    def reject_explicit_null(cls, value):
        if value is None:
            raise ValueError("field may not be empty when supplied")
        return value

    @field_validator("datetime", mode="before")
    @classmethod
    def parse_datetime(cls, value):
        return parse_product_datetime(value)


class ProductImageRead(BaseModel):
    id: int
    product_id: int
    path: str
    url: str


class ProductRead(BaseModel):
    id: int
    name: str
    category: str
    description: str
    datetime: str
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None
    images: list[ProductImageRead] = Field(default_factory=list)


class ProductPage(BaseModel):
    data: list[ProductRead]
    total: int
    per_page: int
    current_page: int
    last_page: int
    from_: Optional[int] = Field(default=None, alias="from")
    to: Optional[int] = None

    model_config = ConfigDict(populate_by_name=True)


class ProductListResponse(BaseModel):
    message: str
    products: ProductPage
