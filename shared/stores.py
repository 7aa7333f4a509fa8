"""
Shared key/value stores for trigger deduplication and distributed locks.

Redis backs both in deployed environments. The in-memory variants keep the
same semantics inside a single process and are used for local runs and tests.
"""
from __future__ import annotations

import asyncio
import time
from typing import Dict, Optional, Protocol, Tuple

from redis import asyncio as aioredis

from shared.config import config
from shared.logger import get_logger

logger = get_logger("shared.stores")


class DedupeStore(Protocol):
    async def has_processed(self, key: str) -> bool:
        ...

    async def mark_processed(self, key: str, ttl_seconds: int) -> None:
        ...

    async def mark_if_new(self, key: str, ttl_seconds: int) -> bool:
        """Atomically mark `key`; False when it was already marked."""
        ...


class LockStore(Protocol):
    async def acquire(self, key: str, owner_token: str, ttl_seconds: int) -> bool:
        ...

    async def release(self, key: str) -> None:
        ...


class RedisDedupeStore:
    def __init__(self, redis: aioredis.Redis) -> None:
        self.redis = redis

    async def has_processed(self, key: str) -> bool:
        return bool(await self.redis.exists(key))

    async def mark_processed(self, key: str, ttl_seconds: int) -> None:
        await self.redis.set(key, "1", ex=ttl_seconds)

    async def mark_if_new(self, key: str, ttl_seconds: int) -> bool:
        return bool(await self.redis.set(key, "1", ex=ttl_seconds, nx=True))


class RedisLockStore:
    def __init__(self, redis: aioredis.Redis) -> None:
        self.redis = redis

    async def acquire(self, key: str, owner_token: str, ttl_seconds: int) -> bool:
        return bool(await self.redis.set(key, owner_token, ex=ttl_seconds, nx=True))

    async def release(self, key: str) -> None:
        await self.redis.delete(key)


class _ExpiringMap:
    def __init__(self) -> None:
        self._values: Dict[str, Tuple[str, float]] = {}
        self._lock = asyncio.Lock()

    def _live(self, key: str) -> Optional[str]:
        entry = self._values.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= time.monotonic():
            del self._values[key]
            return None
        return value

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            return self._live(key)

    async def set(self, key: str, value: str, ttl_seconds: int, *, nx: bool = False) -> bool:
        async with self._lock:
            if nx and self._live(key) is not None:
                return False
            self._values[key] = (value, time.monotonic() + ttl_seconds)
            return True

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._values.pop(key, None)


class InMemoryDedupeStore:
    def __init__(self) -> None:
        self._map = _ExpiringMap()

    async def has_processed(self, key: str) -> bool:
        return await self._map.get(key) is not None

    async def mark_processed(self, key: str, ttl_seconds: int) -> None:
        await self._map.set(key, "1", ttl_seconds)

    async def mark_if_new(self, key: str, ttl_seconds: int) -> bool:
        return await self._map.set(key, "1", ttl_seconds, nx=True)


class InMemoryLockStore:
    def __init__(self) -> None:
        self._map = _ExpiringMap()

    async def acquire(self, key: str, owner_token: str, ttl_seconds: int) -> bool:
        return await self._map.set(key, owner_token, ttl_seconds, nx=True)

    async def release(self, key: str) -> None:
        await self._map.delete(key)

    async def owner(self, key: str) -> Optional[str]:
        return await self._map.get(key)


_redis: Optional[aioredis.Redis] = None
_dedupe_store: Optional[DedupeStore] = None
_lock_store: Optional[LockStore] = None


def get_redis() -> aioredis.Redis:
    global _redis
    if _redis is None:
        _redis = aioredis.from_url(config.redis_url, encoding="utf-8", decode_responses=True)
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


def get_dedupe_store() -> DedupeStore:
    global _dedupe_store
    if _dedupe_store is None:
        _dedupe_store = RedisDedupeStore(get_redis())
    return _dedupe_store


def get_lock_store() -> LockStore:
    global _lock_store
    if _lock_store is None:
        _lock_store = RedisLockStore(get_redis())
    return _lock_store


def configure_stores(*, dedupe: Optional[DedupeStore] = None, lock: Optional[LockStore] = None) -> None:
    """Install specific store implementations (in-memory for local runs and tests)."""
    global _dedupe_store, _lock_store
    _dedupe_store = dedupe
    _lock_store = lock


__all__ = [
    "DedupeStore",
    "InMemoryDedupeStore",
    "InMemoryLockStore",
    "LockStore",
    "RedisDedupeStore",
    "RedisLockStore",
    "close_redis",
    "configure_stores",
    "get_dedupe_store",
    "get_lock_store",
    "get_redis",
]
