import os
import sys
from io import BytesIO
from pathlib import Path

import pytest
import anyio
import httpx
from PIL import Image
from sqlalchemy.orm import sessionmaker

BASE_DIR = Path(__file__).resolve().parents[1]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

os.environ.setdefault("DATABASE_URL", "sqlite:///" + str(BASE_DIR / "test.db"))
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ.setdefault("PUBLIC_BASE_URL", "http://testserver")
os.environ.setdefault("STORAGE_URL_PREFIX", "/storage")
os.environ.setdefault("PRODUCTS_PER_PAGE", "10")
os.environ.setdefault("STRICT_CATEGORIES", "false")
os.environ["REDIS_URL"] = ""

from app.core.cache import cache_manager
from app.core.config import get_settings
from app.core import db as db_module
from app.core import security
from app.core.dependencies import get_db, get_storage
from app.core.storage import LocalBlobStore
from app.models import Base, Product, ProductImage
from app.main import app
from app.services import CategoryService

get_settings.cache_clear()

db_module._engine = None
db_module._SessionLocal = None
_db_path = BASE_DIR / "test.db"


def _create_session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture(scope="session")
def engine():
    if _db_path.exists():
        _db_path.unlink()
    engine = db_module.build_engine(get_settings().DATABASE_URL)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    if _db_path.exists():
        _db_path.unlink()


@pytest.fixture(scope="session")
def session_factory(engine):
    factory = _create_session_factory(engine)
    session = factory()
    CategoryService(session).ensure_categories(get_settings().default_categories)
    session.commit()
    session.close()
    return factory


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def _clean_state(session_factory):
    cache_manager.reset()
    yield
    session = session_factory()
    session.query(ProductImage).delete()
    session.query(Product).delete()
    session.commit()
    session.close()
    cache_manager.reset()


@pytest.fixture()
def blob_store(tmp_path):
    return LocalBlobStore(tmp_path / "media", "http://testserver/storage")


@pytest.fixture()
def auth_headers():
    token = security.create_access_token(subject="catalog-tester")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def make_image():
    def _make_image(fmt: str = "PNG", size: tuple[int, int] = (32, 24), color=(200, 30, 30)) -> bytes:
        buffer = BytesIO()
        Image.new("RGB", size, color).save(buffer, format=fmt)
        return buffer.getvalue()

    return _make_image


@pytest.fixture()
def override_dependencies(session_factory, blob_store):
    def _get_test_db():
        db = session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_test_db
    app.dependency_overrides[get_storage] = lambda: blob_store
    yield app.dependency_overrides
    app.dependency_overrides.clear()


@pytest.fixture()
def client(override_dependencies):
    class _SyncASGIClient:
        def __init__(self, fastapi_app):
            self._client = httpx.AsyncClient(
                transport=httpx.ASGITransport(app=fastapi_app),
                base_url="http://testserver",
            )

        def request(self, method: str, url: str, **kwargs):
            async def _do_request():
                return await self._client.request(method, url, **kwargs)

            return anyio.run(_do_request)

        def get(self, url: str, **kwargs):
            return self.request("GET", url, **kwargs)

        def post(self, url: str, **kwargs):
            return self.request("POST", url, **kwargs)

        def put(self, url: str, **kwargs):
            return self.request("PUT", url, **kwargs)

        def patch(self, url: str, **kwargs):
            return self.request("PATCH", url, **kwargs)

        def delete(self, url: str, **kwargs):
            return self.request("DELETE", url, **kwargs)

        def close(self):
            async def _do_close():
                await self._client.aclose()

            anyio.run(_do_close)

        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc, tb):
            self.close()

    with _SyncASGIClient(app) as test_client:
        yield test_client
