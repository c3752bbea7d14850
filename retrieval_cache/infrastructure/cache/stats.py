"""Statistics for cache performance monitoring."""

from dataclasses import dataclass, field


@dataclass
class CacheStats:
    """Client-side counters kept by a CacheStore instance."""

    hits: int = 0
    misses: int = 0
    errors: int = 0
    discarded: int = 0  # entries dropped as malformed or wrong schema version

    @property
    def total_requests(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        """Fraction of reads served from cache (0.0 when there were no reads)."""
        if self.total_requests == 0:
            return 0.0
        return self.hits / self.total_requests

    def record_hit(self) -> None:
        self.hits += 1

    def record_miss(self) -> None:
        self.misses += 1

    def record_error(self) -> None:
        self.errors += 1

    def reset(self) -> None:
        self.hits = 0
        self.misses = 0
        self.errors = 0
        self.discarded = 0


@dataclass
class CacheBackendStats:
    """Server-side view of the backend plus this client's counters.

    server_hit_rate is a percentage (0-100) from the backend's own
    keyspace counters, or None when the backend does not report them.
    """

    total_keys: int = 0
    memory_usage: str = "unknown"
    server_hit_rate: float | None = None
    client: CacheStats = field(default_factory=CacheStats)
