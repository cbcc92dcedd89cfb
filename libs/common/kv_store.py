"""Durable key-value slots for client-side state.

The only client-side state that survives a reload is small: the cart
identity and the auth token/profile. Components receive a ``KeyValueStore``
instead of touching any ambient global storage, so they can be tested with
the in-memory implementation.

Usage:
    from libs.common.kv_store import build_kv_store

    store = build_kv_store().scoped(session_id)
    await store.set("cartId", cart.id)
"""

from abc import ABC, abstractmethod
from typing import Optional

from libs.common.config import get_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)


class KeyValueStore(ABC):
    """Async get/set/remove over string values."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]: ...

    @abstractmethod
    async def set(self, key: str, value: str) -> None: ...

    @abstractmethod
    async def remove(self, key: str) -> None: ...

    def scoped(self, scope: str) -> "ScopedKeyValueStore":
        """Return a view of this store whose keys live under ``scope``."""
        return ScopedKeyValueStore(self, scope)


class InMemoryKeyValueStore(KeyValueStore):
    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def snapshot(self) -> dict[str, str]:
        return dict(self._data)


class RedisKeyValueStore(KeyValueStore):
    """Key-value slots persisted in Redis (``redis.asyncio``)."""

    def __init__(self, redis, *, prefix: str = ""):
        self._redis = redis
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, *, prefix: str = "") -> "RedisKeyValueStore":
        from redis import asyncio as aioredis

        return cls(aioredis.from_url(url, decode_responses=True), prefix=prefix)

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}" if self._prefix else key

    async def get(self, key: str) -> Optional[str]:
        return await self._redis.get(self._key(key))

    async def set(self, key: str, value: str) -> None:
        await self._redis.set(self._key(key), value)

    async def remove(self, key: str) -> None:
        await self._redis.delete(self._key(key))

    async def close(self) -> None:
        await self._redis.aclose()


class ScopedKeyValueStore(KeyValueStore):
    def __init__(self, inner: KeyValueStore, scope: str):
        if not scope:
            raise ValueError("scope is required")
        self._inner = inner
        self._scope = scope

    def _key(self, key: str) -> str:
        return f"{self._scope}:{key}"

    async def get(self, key: str) -> Optional[str]:
        return await self._inner.get(self._key(key))

    async def set(self, key: str, value: str) -> None:
        await self._inner.set(self._key(key), value)

    async def remove(self, key: str) -> None:
        await self._inner.remove(self._key(key))


def build_kv_store() -> KeyValueStore:
    """Pick the store configured by ``REDIS_URL``."""
    settings = get_settings()
    if settings.REDIS_URL:
        logger.info("Using Redis key-value store")
        return RedisKeyValueStore.from_url(
            settings.REDIS_URL, prefix=settings.KV_KEY_PREFIX
        )
    logger.info("REDIS_URL not set; using in-memory key-value store")
    return InMemoryKeyValueStore()
