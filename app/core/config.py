from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parent.parent.parent
ENV_FILE = BASE_DIR / ".env"


def _split_csv(value: str) -> list[str]:
    value = value.strip().strip('"\'')
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    PROJECT_NAME: str = "Product Catalog"
    API_V1_PREFIX: str = "/api"

    DATABASE_URL: str
    REDIS_URL: Optional[str] = None

    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=60, ge=1)

    LOG_LEVEL: str = Field(default="INFO")
    LOG_FILE_PATH: Optional[str] = None
    ENVIRONMENT: str = Field(default="development")

    # Comma separated; "*" allows every origin.
    CORS_ORIGINS: str = "*"

    MEDIA_ROOT: str = "storage"
    PUBLIC_BASE_URL: str = "http://localhost:8000"
    STORAGE_URL_PREFIX: str = "/storage"

    PRODUCTS_PER_PAGE: int = Field(default=10, ge=1)
    MAX_IMAGE_SIZE_KB: int = Field(default=2048, ge=1)
    STRICT_CATEGORIES: bool = False
    DEFAULT_CATEGORIES: str = "Sports,Electronics,Clothing,Books,Home & Garden"

    @property
    def cors_origins(self) -> list[str]:
        return _split_csv(self.CORS_ORIGINS)

    @property
    def default_categories(self) -> list[str]:
        return _split_csv(self.DEFAULT_CATEGORIES)

    @property
    def media_root_path(self) -> Path:
        path = Path(self.MEDIA_ROOT)
        if not path.is_absolute():
            path = BASE_DIR / path
        return path


load_dotenv(ENV_FILE)


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings instance."""

    return Settings()
