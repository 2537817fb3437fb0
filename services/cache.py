# services/cache.py
"""
Cache-aside store for organization projections (order list, kanban, dashboard).

Everything here is best effort: a failing cache must never fail a mutation,
and a miss is always safe.
"""
import json
import logging
import threading
import time
from typing import Any, Optional

from config import CACHE_URL, CACHE_TTL_SECONDS

logger = logging.getLogger(__name__)


def dashboard_key(org_id: int) -> str:
    return f"dashboard:{org_id}"


def orders_list_key(org_id: int) -> str:
    return f"orders:{org_id}:list"


def kanban_key(org_id: int) -> str:
    return f"kanban:{org_id}"


class MemoryCache:
    """In-process TTL store. Fine for a single worker and for tests."""

    def __init__(self):
        self._data: dict[str, tuple[float, str]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            hit = self._data.get(key)
            if hit is None:
                return None
            expires_at, value = hit
            if expires_at <= time.monotonic():
                del self._data[key]
                return None
            return value

    def setex(self, key: str, ttl: int, value: str) -> None:
        with self._lock:
            self._data[key] = (time.monotonic() + ttl, value)

    def delete(self, *keys: str) -> None:
        with self._lock:
            for k in keys:
                self._data.pop(k, None)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()


class RedisCache:
    def __init__(self, url: str):
        import redis

        self._client = redis.Redis.from_url(url, decode_responses=True, socket_timeout=2)

    def get(self, key: str) -> Optional[str]:
        return self._client.get(key)

    def setex(self, key: str, ttl: int, value: str) -> None:
        self._client.setex(key, ttl, value)

    def delete(self, *keys: str) -> None:
        if keys:
            self._client.delete(*keys)


def make_cache(url: str = CACHE_URL):
    if url.startswith("redis://") or url.startswith("rediss://"):
        return RedisCache(url)
    if url.startswith("memory://"):
        return MemoryCache()
    raise ValueError(f"Unsupported CACHE_URL: {url}")


_cache = None


def get_cache():
    """FastAPI dependency; one cache client per process."""
    global _cache
    if _cache is None:
        _cache = make_cache()
    return _cache


def cache_get_json(cache, key: str) -> Any:
    try:
        raw = cache.get(key)
    except Exception:
        logger.warning("cache read failed for %s", key, exc_info=True)
        return None
    if raw is None:
        return None
    return json.loads(raw)


def cache_set_json(cache, key: str, value: Any, ttl: int = CACHE_TTL_SECONDS) -> None:
    try:
        cache.setex(key, ttl, json.dumps(value, default=str))
    except Exception:
        logger.warning("cache write failed for %s", key, exc_info=True)


def invalidate_order_views(cache, org_id: int) -> None:
    """Drop every derived projection of the organization's orders."""
    keys = (dashboard_key(org_id), orders_list_key(org_id), kanban_key(org_id))
    try:
        cache.delete(*keys)
    except Exception:
        logger.warning("cache invalidation failed for org %s", org_id, exc_info=True)
