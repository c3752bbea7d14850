"""Cache entry domain entity.

Wraps a cached payload with the metadata needed to decide freshness,
independent of how the entry is stored.
"""

from dataclasses import dataclass
from typing import Any

from retrieval_cache.domain.exceptions import InvalidTTLError


@dataclass(frozen=True)
class CacheEntry:
    """A cached value plus its write time, TTL and schema version.

    Freshness is computed from the writer's clock (timestamp in epoch
    milliseconds), not from the backend's remaining TTL:

    - expired: age >= ttl
    - stale:   age >= ttl - grace (grace < ttl)
    """

    data: Any
    timestamp: int
    ttl: int
    version: str

    def __post_init__(self) -> None:
        if self.ttl < 1:
            raise InvalidTTLError(self.ttl, "ttl")

    def age_ms(self, now_ms: int) -> int:
        """Milliseconds since the entry was written (never negative)."""
        return max(0, now_ms - self.timestamp)

    def is_expired(self, now_ms: int) -> bool:
        return self.age_ms(now_ms) >= self.ttl * 1000

    def is_stale(self, now_ms: int, grace_seconds: int) -> bool:
        """Return True once the entry has entered its grace window.

        Args:
            now_ms: Current time in epoch milliseconds.
            grace_seconds: Length of the stale window before expiry. A grace
                at or above the TTL makes every entry stale.

        Raises:
            InvalidTTLError: If grace_seconds is negative.
        """
        if grace_seconds < 0:
            raise InvalidTTLError(grace_seconds, "grace_seconds")
        fresh_for_ms = max(0, self.ttl - grace_seconds) * 1000
        return self.age_ms(now_ms) >= fresh_for_ms
