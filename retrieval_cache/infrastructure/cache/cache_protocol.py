"""Cache protocols for the application layer (DIP).

Services depend on these protocols, not on the Redis implementations,
so they can be exercised with in-memory doubles.
"""

from collections.abc import Mapping
from typing import Any, Protocol

from retrieval_cache.domain.entities import CacheEntry


class CacheProtocol(Protocol):
    """Envelope-aware key-value store. Implementations never raise for backend failures."""

    def now_ms(self) -> int:
        """Current time in epoch milliseconds (the clock used for envelopes)."""
        ...

    async def get(self, key: str) -> CacheEntry | None:
        """Return the stored entry, or None on miss, expiry, bad data or outage."""
        ...

    async def get_many(self, keys: list[str]) -> dict[str, CacheEntry]:
        """Return entries for the keys that hit; misses are omitted."""
        ...

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> bool:
        """Store value in a fresh envelope with TTL. Returns True if written."""
        ...

    async def set_many(self, items: Mapping[str, Any], ttl_seconds: int | None = None) -> int:
        """Store several values with one TTL. Returns how many were written."""
        ...

    async def delete(self, key: str) -> bool:
        """Remove key. Returns True if a key was removed."""
        ...

    async def delete_by_pattern(self, pattern: str) -> int:
        """Remove keys matching a scoped pattern. Returns how many were removed."""
        ...

    async def health_check(self) -> bool:
        """Return True if the backend answers a ping in time."""
        ...


class RevalidationLockProtocol(Protocol):
    """Per-key single-flight marker with bounded lifetime."""

    async def acquire(self, key: str) -> str | None:
        """Try to take the lock for key. Returns an owner token, or None if held."""
        ...

    async def release(self, key: str, token: str) -> None:
        """Release the lock for key if token still owns it."""
        ...
