import json
import logging
import threading
import time
from dataclasses import dataclass
from functools import wraps
from typing import Any, Callable, Optional, Protocol

from redis import Redis
from redis.exceptions import RedisError

from .config import get_settings

logger = logging.getLogger(__name__)

KEY_PREFIX = "catalog"


class CacheBackend(Protocol):
    def get(self, key: str) -> str | bytes | None:
        ...

    def set(self, key: str, value: str, ttl: int) -> None:
        ...

    def clear_namespace(self, namespace: str) -> None:
        ...


class RedisCacheBackend:
    def __init__(self, client: Redis):
        self.client = client

    def get(self, key: str) -> str | bytes | None:
        return self.client.get(key)

    def set(self, key: str, value: str, ttl: int) -> None:
        self.client.setex(key, ttl, value)

    def clear_namespace(self, namespace: str) -> None:
        keys = list(self.client.scan_iter(f"{KEY_PREFIX}:{namespace}:*"))
        if keys:
            self.client.delete(*keys)


@dataclass
class _Entry:
    value: str
    expires_at: float


class InMemoryCacheBackend:
    def __init__(self) -> None:
        self._data: dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            if entry.expires_at < time.time():
                del self._data[key]
                return None
            return entry.value

    def set(self, key: str, value: str, ttl: int) -> None:
        with self._lock:
            self._data[key] = _Entry(value=value, expires_at=time.time() + ttl)

    def clear_namespace(self, namespace: str) -> None:
        prefix = f"{KEY_PREFIX}:{namespace}:"
        with self._lock:
            for key in [k for k in self._data if k.startswith(prefix)]:
                del self._data[key]


class CacheManager:
    def __init__(self) -> None:
        self.backend: CacheBackend | None = None

    def init_backend(self) -> None:
        if self.backend is not None:
            return

        settings = get_settings()
        if settings.REDIS_URL:
            try:
                client = Redis.from_url(settings.REDIS_URL)
                client.ping()
                self.backend = RedisCacheBackend(client)
                logger.info("Using Redis cache backend.")
                return
            except (RedisError, OSError) as exc:
                logger.warning("Redis unavailable (%s). Falling back to in-memory cache.", exc)
        self.backend = InMemoryCacheBackend()
        logger.info("Using in-memory cache backend.")

    def get_backend(self) -> CacheBackend:
        if self.backend is None:
            self.init_backend()
        assert self.backend is not None
        return self.backend

    def reset(self) -> None:
        self.backend = None


cache_manager = CacheManager()


def cache(ttl: int, namespace: str, key_builder: Optional[Callable[..., str]] = None):
    """
    Cache the JSON-serializable result of a sync function.

    Parameters:
        ttl: cache TTL in seconds
        namespace: logical namespace used for invalidation
        key_builder: receives the same args/kwargs and returns a cache key suffix
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(func)
        def wrapper(*args, **kwargs):
            identifier = key_builder(*args, **kwargs) if key_builder else repr((args, kwargs))
            key = f"{KEY_PREFIX}:{namespace}:{identifier}"
            backend = cache_manager.get_backend()
            try:
                cached_value = backend.get(key)
            except RedisError as exc:
                logger.warning("Cache read failed for %s: %s", key, exc)
                cached_value = None
            if cached_value is not None:
                return json.loads(cached_value)

            result = func(*args, **kwargs)
            try:
                backend.set(key, json.dumps(result), ttl)
            except RedisError as exc:
                logger.warning("Cache write failed for %s: %s", key, exc)
            return result

        return wrapper

    return decorator


def invalidate_cache(namespace: str) -> None:
    cache_manager.get_backend().clear_namespace(namespace)
