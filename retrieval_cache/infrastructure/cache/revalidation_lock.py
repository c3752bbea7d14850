"""Revalidation locks: at most one background refresh per cache key.

RedisRevalidationLock stores the lock next to the entry (SET NX EX), so
every instance sharing the backend sees the same lock. InMemoryRevalidationLock
only deduplicates within one process. Both locks expire on their own so a
crashed refresh cannot block later ones for longer than the lock TTL.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

import redis.asyncio as redis

from retrieval_cache.core.constants import CACHE_KEY_SEP, REVALIDATION_LOCK_SUFFIX
from retrieval_cache.domain.exceptions import InvalidTTLError
from retrieval_cache.shared.utils.generators import generate_lock_token

logger = logging.getLogger(__name__)

# Delete the lock only if we still own it (the lock may have expired and been re-taken).
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


def lock_key(cache_key: str) -> str:
    """Return the lock key guarding cache_key."""
    return f"{cache_key}{CACHE_KEY_SEP}{REVALIDATION_LOCK_SUFFIX}"


class RedisRevalidationLock:
    """Cross-process single-flight lock backed by the cache's Redis."""

    def __init__(
        self,
        redis_client: redis.Redis,
        ttl_seconds: int = 180,
        timeout_seconds: float = 3.0,
    ) -> None:
        if ttl_seconds < 1:
            raise InvalidTTLError(ttl_seconds, "revalidation_lock_ttl")
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds
        self.timeout_seconds = timeout_seconds

    async def acquire(self, key: str) -> str | None:
        """Take the lock with SET NX EX. Returns the owner token or None if held.

        A backend failure counts as "held": skipping one refresh is safer
        than letting every reader trigger one.
        """
        token = generate_lock_token()
        try:
            async with asyncio.timeout(self.timeout_seconds):
                acquired = await self.redis.set(
                    lock_key(key), token, nx=True, ex=self.ttl_seconds
                )
        except (redis.RedisError, TimeoutError, OSError) as e:
            logger.warning("Revalidation lock unavailable for key %s: %s", key, e)
            return None
        return token if acquired else None

    async def release(self, key: str, token: str) -> None:
        """Release the lock if token still owns it. Failures are logged; the lock then expires."""
        try:
            async with asyncio.timeout(self.timeout_seconds):
                await self.redis.eval(_RELEASE_SCRIPT, 1, lock_key(key), token)
        except (redis.RedisError, TimeoutError, OSError) as e:
            logger.warning(
                "Revalidation lock release failed for key %s (expires in <= %ss): %s",
                key,
                self.ttl_seconds,
                e,
            )


class InMemoryRevalidationLock:
    """Per-process single-flight lock (key -> owner token and deadline).

    Does not deduplicate across processes; use RedisRevalidationLock when
    more than one instance serves the same tenants.
    """

    def __init__(
        self,
        ttl_seconds: int = 180,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds < 1:
            raise InvalidTTLError(ttl_seconds, "revalidation_lock_ttl")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._locks: dict[str, tuple[str, float]] = {}
        self._mutex = asyncio.Lock()

    async def acquire(self, key: str) -> str | None:
        async with self._mutex:
            now = self._clock()
            held = self._locks.get(key)
            if held is not None and held[1] > now:
                return None
            token = generate_lock_token()
            self._locks[key] = (token, now + self.ttl_seconds)
            return token

    async def release(self, key: str, token: str) -> None:
        async with self._mutex:
            held = self._locks.get(key)
            if held is not None and held[0] == token:
                del self._locks[key]

    def held_keys(self) -> list[str]:
        """Keys whose lock has not yet expired."""
        now = self._clock()
        return [key for key, (_, deadline) in self._locks.items() if deadline > now]
