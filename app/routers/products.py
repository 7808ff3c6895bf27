import re
from dataclasses import dataclass, field
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session
from starlette.datastructures import UploadFile

from app.core.dependencies import get_current_principal, get_db, get_storage
from app.core.storage import BlobStore
from app.schemas import ErrorResponse, MessageResponse, ProductListResponse, ProductPage, ProductRead
from app.services import ProductService, UploadedImage

router = APIRouter(
    prefix="/products",
    tags=["products"],
    dependencies=[Depends(get_current_principal)],
    responses={
        status.HTTP_401_UNAUTHORIZED: {"model": ErrorResponse},
        status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
        status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": ErrorResponse},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
    },
)

PRODUCT_FIELDS = ("name", "category", "description", "datetime")
_LIST_FIELD = re.compile(r"^(?P<name>[A-Za-z_]+)\[\d*\]$")


@dataclass
class ProductForm:
    data: dict = field(default_factory=dict)
    images: list[UploadedImage] = field(default_factory=list)
    # None when the client did not send existing_images at all.
    retained_paths: Optional[list[str]] = None
    method_override: Optional[str] = None


def _base_field(key: str) -> str:
    match = _LIST_FIELD.match(key)
    return match.group("name") if match else key


async def parse_product_form(request: Request) -> ProductForm:
    """Read a multipart product payload; list fields may be sent as ``x``, ``x[]`` or ``x[N]``."""

    form = await request.form()
    parsed = ProductForm()
    for key, value in form.multi_items():
        name = _base_field(key)
        if name in PRODUCT_FIELDS and not isinstance(value, UploadFile):
            parsed.data[name] = value
        elif name == "images":
            if isinstance(value, UploadFile):
                content = await value.read()
                if value.filename or content:
                    parsed.images.append(
                        UploadedImage(filename=value.filename or "", content=content, content_type=value.content_type)
                    )
            elif value:
                parsed.images.append(UploadedImage(filename="", content=b""))
        elif name == "existing_images":
            if parsed.retained_paths is None:
                parsed.retained_paths = []
            if isinstance(value, str) and value.strip():
                parsed.retained_paths.append(value.strip())
        elif name == "_method" and isinstance(value, str):
            parsed.method_override = value.strip().upper()
    return parsed


def _service(db: Session, storage: BlobStore) -> ProductService:
    return ProductService(db, storage)


@router.get("", response_model=ProductListResponse)
def list_products(
    search: Optional[str] = Query(default=None),
    category: Optional[str] = Query(default=None),
    page: int = Query(default=1, ge=1),
    db: Session = Depends(get_db),
    storage: BlobStore = Depends(get_storage),
):
    service = _service(db, storage)
    result = service.list_products(search=search or None, category=category or None, page=page)
    return ProductListResponse(
        message="Products retrieved successfully",
        products=ProductPage.model_validate(result),
    )


@router.post("", response_model=ProductRead, status_code=status.HTTP_201_CREATED)
def create_product(
    form: ProductForm = Depends(parse_product_form),
    db: Session = Depends(get_db),
    storage: BlobStore = Depends(get_storage),
):
    service = _service(db, storage)
    product = service.create_product(data=form.data, files=form.images)
    return ProductRead.model_validate(service.serialize_product(product))


@router.get("/{product_id}", response_model=ProductRead)
def get_product(
    product_id: int,
    db: Session = Depends(get_db),
    storage: BlobStore = Depends(get_storage),
):
    service = _service(db, storage)
    product = service.get_product(product_id)
    return ProductRead.model_validate(service.serialize_product(product))


def _update(product_id: int, form: ProductForm, db: Session, storage: BlobStore) -> ProductRead:
    service = _service(db, storage)
    product = service.update_product(
        product_id=product_id,
        data=form.data,
        files=form.images,
        retained_paths=form.retained_paths,
    )
    return ProductRead.model_validate(service.serialize_product(product))


@router.put("/{product_id}", response_model=ProductRead)
@router.patch("/{product_id}", response_model=ProductRead)
def update_product(
    product_id: int,
    form: ProductForm = Depends(parse_product_form),
    db: Session = Depends(get_db),
    storage: BlobStore = Depends(get_storage),
):
    return _update(product_id, form, db, storage)


@router.post("/{product_id}", response_model=ProductRead, include_in_schema=False)
def update_product_spoofed(
    product_id: int,
    form: ProductForm = Depends(parse_product_form),
    db: Session = Depends(get_db),
    storage: BlobStore = Depends(get_storage),
):
    if form.method_override not in {"PUT", "PATCH"}:
        raise HTTPException(status_code=status.HTTP_405_METHOD_NOT_ALLOWED, detail="Method not allowed")
    return _update(product_id, form, db, storage)


@router.delete("/{product_id}", response_model=MessageResponse)
def delete_product(
    product_id: int,
    db: Session = Depends(get_db),
    storage: BlobStore = Depends(get_storage),
):
    service = _service(db, storage)
    service.delete_product(product_id)
    return MessageResponse(message="Product deleted successfully")
