"""Key-value storage for cross-request gateway state.

Holds cached tenant configuration, cached owner plans and usage counters.
Two backends are provided:
- In-memory storage (development/single instance)
- Redis storage (production/distributed)
"""

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

from oauth_gateway.config import Settings, get_settings


class KVStoreError(Exception):
    """The key-value backend could not complete an operation."""


class KVStore(ABC):
    """Abstract backend for gateway key-value storage."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the value for key, or None when absent or expired."""
        pass

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store value under key for ttl_seconds."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove key if present."""
        pass

    @abstractmethod
    async def incr_with_expiry(self, key: str, expire_at: int) -> int:
        """Atomically increment a counter and pin its expiry.

        A missing or expired key counts as zero before incrementing.

        Args:
            key: Counter key
            expire_at: Unix timestamp at which the counter expires

        Returns:
            The counter value after incrementing
        """
        pass

    async def close(self) -> None:
        """Release backend resources."""
        return None


class InMemoryKVStore(KVStore):
    """In-memory storage with lazy expiry.

    Suitable for development, tests and single-instance deployments.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._data: dict[str, tuple[str, float]] = {}  # key -> (value, expires_at)
        self._lock = asyncio.Lock()
        self._clock = clock

    def _live(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self._clock():
            del self._data[key]
            return None
        return value

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            return self._live(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        async with self._lock:
            self._data[key] = (value, self._clock() + ttl_seconds)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    async def incr_with_expiry(self, key: str, expire_at: int) -> int:
        async with self._lock:
            current = self._live(key)
            try:
                value = int(current) + 1 if current is not None else 1
            except ValueError:
                raise KVStoreError(f"Value at {key} is not an integer")
            self._data[key] = (str(value), float(expire_at))
            return value


class RedisKVStore(KVStore):
    """Redis-based storage for distributed deployments.

    Counter increments run INCR and EXPIREAT inside one MULTI/EXEC
    transaction, so concurrent logins never lose an update.
    """

    def __init__(self, redis_url: Optional[str] = None, client=None):
        self._redis_url = redis_url or get_settings().redis_url
        self._redis = client

    async def _get_redis(self):
        if self._redis is None:
            import redis.asyncio as redis

            self._redis = redis.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._redis

    async def get(self, key: str) -> Optional[str]:
        redis = await self._get_redis()
        try:
            return await redis.get(key)
        except Exception as e:
            raise KVStoreError(f"Redis GET failed: {e}") from e

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        redis = await self._get_redis()
        try:
            await redis.set(key, value, ex=ttl_seconds)
        except Exception as e:
            raise KVStoreError(f"Redis SET failed: {e}") from e

    async def delete(self, key: str) -> None:
        redis = await self._get_redis()
        try:
            await redis.delete(key)
        except Exception as e:
            raise KVStoreError(f"Redis DEL failed: {e}") from e

    async def incr_with_expiry(self, key: str, expire_at: int) -> int:
        redis = await self._get_redis()
        try:
            async with redis.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.expireat(key, expire_at)
                value, _ = await pipe.execute()
            return int(value)
        except Exception as e:
            raise KVStoreError(f"Redis INCR failed: {e}") from e

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


def create_kv_store(settings: Optional[Settings] = None) -> KVStore:
    """Use Redis if configured, otherwise in-memory."""
    settings = settings or get_settings()
    if settings.redis_url:
        return RedisKVStore(settings.redis_url)
    return InMemoryKVStore()
