from app.core.storage import StorageError
from app.core.dependencies import get_storage
from app.main import app
from app.models import Product, ProductImage

BALL = {
    "name": "Ball",
    "category": "Sports",
    "description": "Round",
    "datetime": "2025-02-11T17:08:00Z",
}


def _create(client, auth_headers, make_image, data=None, images=1):
    files = [
        (f"images[{index}]", (f"photo{index}.png", make_image(), "image/png"))
        for index in range(images)
    ]
    response = client.post(
        "/api/products",
        data=data or BALL,
        files=files or None,
        headers=auth_headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


def test_create_product_with_image(client, auth_headers, make_image, blob_store):
    product = _create(client, auth_headers, make_image)

    assert product["name"] == "Ball"
    assert product["category"] == "Sports"
    assert product["description"] == "Round"
    assert product["datetime"] == "2025-02-11 17:08:00"
    assert len(product["images"]) == 1

    image = product["images"][0]
    assert image["path"].startswith("products/")
    assert image["url"] == f"http://testserver/storage/{image['path']}"
    assert blob_store.exists(image["path"])

    fetched = client.get(image["url"])
    assert fetched.status_code == 200
    assert fetched.content == blob_store.path_for(image["path"]).read_bytes()


def test_create_product_missing_fields_creates_nothing(client, auth_headers, db_session):
    response = client.post(
        "/api/products",
        data={"name": "Ball", "datetime": "2025-02-11T17:08:00Z"},
        headers=auth_headers,
    )
    assert response.status_code == 422
    body = response.json()
    assert body["message"]
    assert set(body["errors"]) == {"category", "description"}
    assert db_session.query(Product).count() == 0


def test_create_product_rejects_bad_images(client, auth_headers, make_image, db_session):
    oversized = b"GIF89a" + b"\x00" * (2 * 1024 * 1024 + 10)
    files = [
        ("images[0]", ("notes.txt", b"definitely not an image", "text/plain")),
        ("images[1]", ("huge.gif", oversized, "image/gif")),
        ("images[2]", ("fine.jpg", make_image("JPEG"), "image/jpeg")),
    ]
    response = client.post("/api/products", data=BALL, files=files, headers=auth_headers)

    assert response.status_code == 422
    errors = response.json()["errors"]
    assert "images.0" in errors
    assert any("kilobytes" in message for message in errors["images.1"])
    assert "images.2" not in errors
    assert db_session.query(Product).count() == 0


def test_create_product_rejects_long_name_and_bad_datetime(client, auth_headers):
    response = client.post(
        "/api/products",
        data={**BALL, "name": "x" * 256, "datetime": "not a date"},
        headers=auth_headers,
    )
    assert response.status_code == 422
    assert set(response.json()["errors"]) == {"name", "datetime"}


def test_list_products_search_matches_name_or_description(client, auth_headers, make_image):
    _create(client, auth_headers, make_image, data={**BALL, "name": "Red ball"}, images=0)
    _create(client, auth_headers, make_image, data={**BALL, "name": "Bat", "description": "Bright RED finish"}, images=0)
    _create(client, auth_headers, make_image, data={**BALL, "name": "Blue bat", "description": "Plain"}, images=0)

    response = client.get("/api/products", params={"search": "red"}, headers=auth_headers)
    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Products retrieved successfully"
    names = {item["name"] for item in body["products"]["data"]}
    assert names == {"Red ball", "Bat"}
    assert body["products"]["total"] == 2


def test_list_products_filters_category_and_paginates(client, auth_headers, make_image):
    for index in range(12):
        _create(client, auth_headers, make_image, data={**BALL, "name": f"Ball {index}"}, images=0)
    _create(client, auth_headers, make_image, data={**BALL, "name": "Novel", "category": "Books"}, images=0)

    first = client.get("/api/products", params={"category": "Sports"}, headers=auth_headers).json()["products"]
    assert first["total"] == 12
    assert first["per_page"] == 10
    assert first["current_page"] == 1
    assert first["last_page"] == 2
    assert len(first["data"]) == 10
    assert first["from"] == 1 and first["to"] == 10

    second = client.get(
        "/api/products", params={"category": "Sports", "page": 2}, headers=auth_headers
    ).json()["products"]
    assert len(second["data"]) == 2
    assert all(item["category"] == "Sports" for item in first["data"] + second["data"])

    books = client.get("/api/products", params={"category": "Books"}, headers=auth_headers).json()["products"]
    assert [item["name"] for item in books["data"]] == ["Novel"]


def test_get_product(client, auth_headers, make_image):
    product = _create(client, auth_headers, make_image)
    response = client.get(f"/api/products/{product['id']}", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["images"] == product["images"]

    missing = client.get("/api/products/999999", headers=auth_headers)
    assert missing.status_code == 404


def test_update_with_empty_existing_images_removes_image(client, auth_headers, make_image, blob_store, db_session):
    product = _create(client, auth_headers, make_image)
    path = product["images"][0]["path"]

    response = client.put(
        f"/api/products/{product['id']}",
        data={"existing_images": ""},
        headers=auth_headers,
    )
    assert response.status_code == 200, response.text
    assert response.json()["images"] == []
    assert not blob_store.exists(path)
    assert db_session.query(ProductImage).filter(ProductImage.product_id == product["id"]).count() == 0


def test_update_keeps_retained_and_adds_new_images(client, auth_headers, make_image, blob_store):
    product = _create(client, auth_headers, make_image, images=2)
    keep, drop = (image["path"] for image in product["images"])

    response = client.put(
        f"/api/products/{product['id']}",
        data={"existing_images[0]": keep.removeprefix("products/")},
        files=[("images[0]", ("new.jpg", make_image("JPEG"), "image/jpeg"))],
        headers=auth_headers,
    )
    assert response.status_code == 200, response.text
    paths = [image["path"] for image in response.json()["images"]]
    assert len(paths) == 2
    assert keep in paths
    assert drop not in paths
    assert blob_store.exists(keep)
    assert not blob_store.exists(drop)


def test_update_accepts_image_urls_as_retained_references(client, auth_headers, make_image):
    product = _create(client, auth_headers, make_image, images=2)
    keep = product["images"][1]

    response = client.put(
        f"/api/products/{product['id']}",
        data={"existing_images[]": keep["url"]},
        headers=auth_headers,
    )
    assert [image["path"] for image in response.json()["images"]] == [keep["path"]]


def test_update_without_existing_images_keeps_everything(client, auth_headers, make_image):
    product = _create(client, auth_headers, make_image, images=2)

    response = client.patch(
        f"/api/products/{product['id']}",
        data={"name": "Beach ball"},
        headers=auth_headers,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["name"] == "Beach ball"
    assert body["description"] == "Round"
    assert len(body["images"]) == 2


def test_update_normalizes_locale_datetime(client, auth_headers, make_image):
    product = _create(client, auth_headers, make_image, images=0)

    response = client.put(
        f"/api/products/{product['id']}",
        data={"datetime": "2/11/2025, 5:08:00 PM"},
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert response.json()["datetime"] == "2025-02-11 17:08:00"

    invalid = client.put(
        f"/api/products/{product['id']}",
        data={"datetime": "someday soon"},
        headers=auth_headers,
    )
    assert invalid.status_code == 422
    assert "datetime" in invalid.json()["errors"]


def test_update_applies_date_string_offset(client, auth_headers, make_image):
    product = _create(client, auth_headers, make_image, images=0)

    response = client.put(
        f"/api/products/{product['id']}",
        data={"datetime": "Tue Feb 11 2025 17:08:00 GMT+0800 (China Standard Time)"},
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert response.json()["datetime"] == "2025-02-11 09:08:00"


def test_update_rejects_empty_name(client, auth_headers, make_image):
    product = _create(client, auth_headers, make_image, images=0)
    response = client.put(f"/api/products/{product['id']}", data={"name": "  "}, headers=auth_headers)
    assert response.status_code == 422
    assert "name" in response.json()["errors"]


def test_update_missing_product_returns_404(client, auth_headers):
    response = client.put("/api/products/424242", data={"name": "Ghost"}, headers=auth_headers)
    assert response.status_code == 404
    body = response.json()
    assert body["message"] == "Product not found"
    assert body["error"]


def test_method_spoofed_update(client, auth_headers, make_image):
    product = _create(client, auth_headers, make_image)

    response = client.post(
        f"/api/products/{product['id']}",
        data={"_method": "PUT", "name": "Spoofed", "existing_images[0]": product["images"][0]["path"]},
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert response.json()["name"] == "Spoofed"
    assert len(response.json()["images"]) == 1

    rejected = client.post(f"/api/products/{product['id']}", data={"name": "x"}, headers=auth_headers)
    assert rejected.status_code == 405


def test_delete_product_removes_rows_and_files(client, auth_headers, make_image, blob_store, db_session):
    product = _create(client, auth_headers, make_image, images=2)
    paths = [image["path"] for image in product["images"]]

    response = client.delete(f"/api/products/{product['id']}", headers=auth_headers)
    assert response.status_code == 200
    assert response.json() == {"message": "Product deleted successfully"}

    assert db_session.query(Product).filter(Product.id == product["id"]).first() is None
    assert db_session.query(ProductImage).filter(ProductImage.product_id == product["id"]).count() == 0
    assert not any(blob_store.exists(path) for path in paths)

    again = client.delete(f"/api/products/{product['id']}", headers=auth_headers)
    assert again.status_code == 404


def test_product_routes_require_authentication(client):
    assert client.get("/api/products").status_code == 401
    assert client.post("/api/products", data=BALL).status_code == 401
    invalid = client.get("/api/products", headers={"Authorization": "Bearer not-a-token"})
    assert invalid.status_code == 401
    assert invalid.json()["message"] == "Invalid token"


class _FlakyBlobStore:
    """Delegates to a real store but fails on the Nth write."""

    def __init__(self, inner, fail_on: int):
        self.inner = inner
        self.fail_on = fail_on
        self.writes = 0

    def put(self, key, data):
        self.writes += 1
        if self.writes == self.fail_on:
            raise StorageError("disk full")
        return self.inner.put(key, data)

    def delete(self, key):
        self.inner.delete(key)

    def exists(self, key):
        return self.inner.exists(key)

    def url_for(self, key):
        return self.inner.url_for(key)


def test_create_upload_failure_rolls_back(client, auth_headers, make_image, blob_store, db_session):
    app.dependency_overrides[get_storage] = lambda: _FlakyBlobStore(blob_store, fail_on=2)
    files = [
        ("images[0]", ("a.png", make_image(), "image/png")),
        ("images[1]", ("b.png", make_image(), "image/png")),
    ]
    response = client.post("/api/products", data=BALL, files=files, headers=auth_headers)

    assert response.status_code == 500
    assert response.json()["message"] == "Error creating product"
    assert "image 2" in response.json()["error"]
    assert db_session.query(Product).count() == 0
    assert db_session.query(ProductImage).count() == 0
    stored = list((blob_store.root / "products").glob("*")) if (blob_store.root / "products").exists() else []
    assert stored == []


def test_product_routes_document_error_envelope(client):
    schema = client.get("/openapi.json").json()

    responses = schema["paths"]["/api/products/{product_id}"]["delete"]["responses"]
    for code in ("401", "404", "422", "500"):
        assert responses[code]["content"]["application/json"]["schema"]["$ref"] == "#/components/schemas/ErrorResponse"
    assert set(schema["components"]["schemas"]["ErrorResponse"]["properties"]) == {"message", "error", "errors"}


def test_storage_route_serves_only_local_blobs(client, auth_headers, make_image, blob_store):
    product = _create(client, auth_headers, make_image)
    url = product["images"][0]["url"]

    app.dependency_overrides[get_storage] = lambda: _FlakyBlobStore(blob_store, fail_on=0)
    response = client.get(url)
    assert response.status_code == 404
    assert response.json()["message"] == "File not found"

    app.dependency_overrides[get_storage] = lambda: blob_store
    assert client.get(url).status_code == 200
    assert client.get("/storage/products/missing.png").status_code == 404
