"""Domain entities."""

from retrieval_cache.domain.entities.cache_entry import CacheEntry

__all__ = [
    "CacheEntry",
]
