import logging
from typing import Any, Optional

import httpx

from .compression import ImageFile

logger = logging.getLogger(__name__)


class ClientError(Exception):
    """Base exception for catalog client errors."""


class ValidationError(ClientError):
    def __init__(self, errors: dict[str, list[str]]):
        first = next(iter(errors.values()), ["Invalid input"])
        super().__init__(first[0])
        self.errors = errors


class ApiError(ClientError):
    def __init__(self, status_code: int, message: str, payload: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.payload = payload


class CatalogApiClient:
    """Thin async wrapper over the catalog HTTP API."""

    def __init__(
        self,
        base_url: str = "",
        *,
        token: Optional[str] = None,
        api_prefix: str = "/api",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if client is None:
            client = httpx.AsyncClient(base_url=base_url, timeout=timeout)
        client.headers.update(headers)
        self._client = client
        self.api_prefix = api_prefix.rstrip("/")

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "CatalogApiClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def list_categories(self) -> list[dict]:
        return await self._request("GET", "/categories")

    async def list_products(self, *, search: str = "", category: str = "", page: int = 1) -> dict:
        params: dict[str, Any] = {"page": page}
        if search:
            params["search"] = search
        if category:
            params["category"] = category
        return await self._request("GET", "/products", params=params)

    async def get_product(self, product_id: int) -> dict:
        return await self._request("GET", f"/products/{product_id}")

    async def create_product(self, fields: dict[str, str], images: list[ImageFile]) -> dict:
        return await self._request(
            "POST",
            "/products",
            data=fields,
            files=self._image_parts(images),
        )

    async def update_product(
        self,
        product_id: int,
        fields: dict[str, str],
        images: list[ImageFile],
        existing_images: Optional[list[str]] = None,
    ) -> dict:
        data: dict[str, Any] = {**fields, "_method": "PUT"}
        if existing_images is not None:
            if existing_images:
                for index, path in enumerate(existing_images):
                    data[f"existing_images[{index}]"] = path
            else:
                # Present-but-empty: the server drops every stored image.
                data["existing_images"] = ""
        return await self._request(
            "POST",
            f"/products/{product_id}",
            data=data,
            files=self._image_parts(images),
        )

    async def delete_product(self, product_id: int) -> dict:
        return await self._request("DELETE", f"/products/{product_id}")

    @staticmethod
    def _image_parts(images: list[ImageFile]) -> list[tuple[str, tuple[str, bytes, str]]] | None:
        if not images:
            return None
        return [
            (f"images[{index}]", (image.name, image.content, image.content_type))
            for index, image in enumerate(images)
        ]

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.api_prefix}{path}"
        response = await self._client.request(method, url, **kwargs)
        if response.status_code == 401:
            logger.warning("Unauthenticated request to %s %s", method, url)
        if response.is_error:
            try:
                payload = response.json()
            except ValueError:
                payload = None
            message = payload.get("message") if isinstance(payload, dict) else None
            raise ApiError(response.status_code, message or response.reason_phrase, payload)
        return response.json()
