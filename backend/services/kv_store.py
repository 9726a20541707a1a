"""
Key-value store for small shared state.

Used for webhook idempotency markers and per-user cache entries such as the
most recent analysis id. Redis is used when REDIS_URL is configured;
otherwise an in-process store with bounded size and least-recently-used
eviction takes its place.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Optional

import redis.asyncio as redis

from infrastructure.config import settings

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Abstract string key-value store with optional per-key TTL."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the value for ``key`` or None if absent or expired."""

    @abstractmethod
    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        """Store ``value`` under ``key``; ``ttl`` is in seconds."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove ``key``; returns True if something was removed."""

    @abstractmethod
    async def set_if_absent(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        """Store ``value`` only if ``key`` is not present. Returns True if stored."""

    async def close(self) -> None:
        """Release any underlying connections."""


class InMemoryKeyValueStore(KeyValueStore):
    """
    Process-local store.

    Holds at most ``max_entries`` keys; inserting past the bound evicts the
    least recently used key. Expired keys are dropped lazily on access.
    """

    def __init__(self, max_entries: int = 10_000):
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self._max_entries = max_entries
        self._data: OrderedDict[str, tuple[str, Optional[float]]] = OrderedDict()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._data)

    def _live(self, key: str) -> Optional[str]:
        item = self._data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at is not None and expires_at <= time.monotonic():
            del self._data[key]
            return None
        self._data.move_to_end(key)
        return value

    def _store(self, key: str, value: str, ttl: Optional[int]) -> None:
        expires_at = time.monotonic() + ttl if ttl else None
        self._data[key] = (value, expires_at)
        self._data.move_to_end(key)
        while len(self._data) > self._max_entries:
            evicted, _ = self._data.popitem(last=False)
            logger.debug("Evicted key %s from in-memory store", evicted)

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            return self._live(key)

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        async with self._lock:
            self._store(key, value, ttl)

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._data.pop(key, None) is not None

    async def set_if_absent(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        async with self._lock:
            if self._live(key) is not None:
                return False
            self._store(key, value, ttl)
            return True


class RedisKeyValueStore(KeyValueStore):
    """Redis-backed store shared across workers."""

    def __init__(self, client: "redis.Redis", namespace: str = "llmnav"):
        self._client = client
        self._namespace = namespace

    @classmethod
    def from_url(cls, url: str, namespace: str = "llmnav") -> "RedisKeyValueStore":
        client = redis.from_url(
            url,
            encoding="utf-8",
            decode_responses=True,
            socket_timeout=5,
            socket_connect_timeout=5,
        )
        return cls(client, namespace=namespace)

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def get(self, key: str) -> Optional[str]:
        return await self._client.get(self._key(key))

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        await self._client.set(self._key(key), value, ex=ttl)

    async def delete(self, key: str) -> bool:
        return bool(await self._client.delete(self._key(key)))

    async def set_if_absent(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        return bool(await self._client.set(self._key(key), value, ex=ttl, nx=True))

    async def ping(self) -> bool:
        return bool(await self._client.ping())

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("Redis key-value store connection closed")


def create_kv_store() -> KeyValueStore:
    """Build the store selected by configuration."""
    if settings.redis_url:
        logger.info("Using Redis key-value store")
        return RedisKeyValueStore.from_url(settings.redis_url)
    logger.info("Using in-memory key-value store (max %d entries)", settings.kv_max_entries)
    return InMemoryKeyValueStore(max_entries=settings.kv_max_entries)


_store: Optional[KeyValueStore] = None


def get_kv_store() -> KeyValueStore:
    """FastAPI dependency returning the process-wide store."""
    global _store
    if _store is None:
        _store = create_kv_store()
    return _store


async def close_kv_store() -> None:
    global _store
    if _store is not None:
        await _store.close()
        _store = None
