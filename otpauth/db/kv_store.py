"""
otpauth/db/kv_store.py

Purpose: Key-value store for short-lived OTP state

- Same get/set/delete/scan contract for an in-process map and for Redis
- Per-key locks so all operations on one phone number are serialized
- In-process store is lost on restart; Redis is shared by every instance
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncContextManager, Dict, List, Optional, Tuple

import redis.asyncio as aioredis
from redis.exceptions import LockError, LockNotOwnedError

from otpauth.core.logging import get_logger
from otpauth.utils.time_utils import Clock, utc_now

logger = get_logger(__name__)


class LockUnavailableError(Exception):
    """
    Raised by lock() when another holder kept the key past the blocking timeout.
    """

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Lock on {key} is held by another operation")


class KeyValueStore:
    """
    Contract shared by every store implementation. Values are strings;
    callers serialize their own documents.
    """

    name = "abstract"

    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError()

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        raise NotImplementedError()

    async def delete(self, key: str) -> bool:
        raise NotImplementedError()

    async def scan_keys(self, prefix: str) -> List[str]:
        raise NotImplementedError()

    def lock(self, key: str) -> AsyncContextManager:
        """
        Exclusive section for one key.

        Raises:
            LockUnavailableError: the lock could not be taken in time
        """
        raise NotImplementedError()

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class InMemoryKeyValueStore(KeyValueStore):
    """
    Process-local store used in tests and single-instance development.

    Expiry is evaluated lazily against the injected clock, so tests can move
    time forward without sleeping.
    """

    name = "memory"

    def __init__(self, clock: Clock = utc_now):
        self._clock = clock
        self._data: Dict[str, Tuple[str, Optional[datetime]]] = {}
        self._locks: Dict[str, List] = {}

    def _live(self, key: str) -> Optional[Tuple[str, Optional[datetime]]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return entry

    async def get(self, key: str) -> Optional[str]:
        entry = self._live(key)
        return entry[0] if entry else None

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        expires_at = None
        if ttl_seconds is not None:
            expires_at = self._clock() + timedelta(seconds=max(1, int(ttl_seconds)))
        self._data[key] = (value, expires_at)

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def scan_keys(self, prefix: str) -> List[str]:
        return [key for key in list(self._data) if key.startswith(prefix) and self._live(key)]

    @asynccontextmanager
    async def lock(self, key: str):
        # [lock, holders + waiters]; dropped once nobody references it
        entry = self._locks.setdefault(key, [asyncio.Lock(), 0])
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                self._locks.pop(key, None)

    def purge_expired(self) -> int:
        """Drops expired entries. Returns the number of entries removed."""
        before = len(self._data)
        for key in list(self._data):
            self._live(key)
        return before - len(self._data)


class RedisKeyValueStore(KeyValueStore):
    """
    Redis-backed store shared by every service instance. Locks are Redis
    locks, so serialization per phone number holds across processes.
    """

    name = "redis"

    def __init__(
        self,
        client: aioredis.Redis,
        lock_timeout: float = 15,
        lock_blocking_timeout: float = 5,
    ):
        self._client = client
        self._lock_timeout = lock_timeout
        self._lock_blocking_timeout = lock_blocking_timeout

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisKeyValueStore":
        client = aioredis.from_url(url, decode_responses=True)
        return cls(client, **kwargs)

    async def get(self, key: str) -> Optional[str]:
        return await self._client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        if ttl_seconds is None:
            await self._client.set(key, value)
        else:
            await self._client.set(key, value, ex=max(1, int(ttl_seconds)))

    async def delete(self, key: str) -> bool:
        return bool(await self._client.delete(key))

    async def scan_keys(self, prefix: str) -> List[str]:
        return [key async for key in self._client.scan_iter(match=f"{prefix}*")]

    @asynccontextmanager
    async def lock(self, key: str):
        lock = self._client.lock(
            f"lock:{key}",
            timeout=self._lock_timeout,
            blocking_timeout=self._lock_blocking_timeout,
        )
        try:
            acquired = await lock.acquire()
        except LockError as e:
            raise LockUnavailableError(key) from e
        if not acquired:
            raise LockUnavailableError(key)

        try:
            yield
        finally:
            try:
                await lock.release()
            except LockNotOwnedError:
                # Expired while held; whatever the block wrote is already in place
                logger.warning(f"Lock on {key} expired after {self._lock_timeout}s before release")

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except Exception as e:
            logger.error(f"Redis health check failed: {str(e)}")
            return False

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("Redis connection closed")


def create_kv_store(redis_url: Optional[str], clock: Clock = utc_now, **lock_options) -> KeyValueStore:
    """
    Builds the store for the configured environment.
    """
    if redis_url:
        logger.info("Using Redis for OTP sessions")
        return RedisKeyValueStore.from_url(redis_url, **lock_options)

    logger.warning(
        "REDIS_URL not set: OTP sessions are kept in process memory. "
        "A restart invalidates every in-flight code and limits are not shared between instances."
    )
    return InMemoryKeyValueStore(clock=clock)
