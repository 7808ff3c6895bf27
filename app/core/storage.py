from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path, PurePosixPath
from typing import Protocol
from uuid import uuid4

from app.core.config import get_settings

logger = logging.getLogger(__name__)

PRODUCT_IMAGE_NAMESPACE = "products"


class StorageError(Exception):
    """Raised when a blob cannot be written, read or removed."""


class BlobStore(Protocol):
    def put(self, key: str, data: bytes) -> str:
        ...

    def delete(self, key: str) -> None:
        ...

    def exists(self, key: str) -> bool:
        ...

    def url_for(self, key: str) -> str:
        ...


def _clean_key(key: str) -> str:
    parts = [part for part in PurePosixPath(key.replace("\\", "/")).parts if part not in ("", ".", "..", "/")]
    if not parts:
        raise StorageError(f"Invalid storage key: {key!r}")
    return "/".join(parts)


def generate_key(extension: str, namespace: str = PRODUCT_IMAGE_NAMESPACE) -> str:
    ext = extension.lower()
    if ext and not ext.startswith("."):
        ext = f".{ext}"
    return f"{namespace}/{uuid4().hex}{ext}"


class LocalBlobStore:
    """Keeps blobs on the local filesystem and serves them under a public URL prefix."""

    def __init__(self, root: Path, base_url: str):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def path_for(self, key: str) -> Path:
        return self.root / _clean_key(key)

    def put(self, key: str, data: bytes) -> str:
        clean = _clean_key(key)
        destination = self.root / clean
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            with destination.open("wb") as buffer:
                buffer.write(data)
        except OSError as exc:
            raise StorageError(f"Failed to store {clean}: {exc}") from exc
        return clean

    def delete(self, key: str) -> None:
        path = self.path_for(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to delete {key}: {exc}") from exc

    def exists(self, key: str) -> bool:
        return self.path_for(key).is_file()

    def url_for(self, key: str) -> str:
        return f"{self.base_url}/{_clean_key(key)}"


def key_from_reference(reference: str, namespace: str = PRODUCT_IMAGE_NAMESPACE) -> str | None:
    """Turn a client supplied image reference (URL, key or bare file name) into a storage key."""

    value = (reference or "").strip()
    if not value:
        return None
    settings = get_settings()
    marker = f"{settings.STORAGE_URL_PREFIX.rstrip('/')}/"
    if "://" in value or value.startswith(marker):
        if marker in value:
            value = value.split(marker, 1)[1]
        else:
            value = PurePosixPath(value.split("://", 1)[1]).name
    value = value.split("?", 1)[0].lstrip("/")
    if not value:
        return None
    if not value.startswith(f"{namespace}/"):
        value = f"{namespace}/{value}"
    return value


@lru_cache
def get_blob_store() -> LocalBlobStore:
    settings = get_settings()
    root = settings.media_root_path
    root.mkdir(parents=True, exist_ok=True)
    base_url = settings.PUBLIC_BASE_URL.rstrip("/") + settings.STORAGE_URL_PREFIX
    logger.info("Local blob store rooted at %s", root)
    return LocalBlobStore(root, base_url)
