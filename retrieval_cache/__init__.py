"""Tenant-scoped retrieval cache with stale-while-revalidate.

Typical use from a host process::

    async with cache_stack() as stack:
        hits = await stack.cache.get_cached_retrieval_results(scope, query, ctx)
"""

from retrieval_cache.application.services import (
    CacheWarmingService,
    InvalidationService,
    KeyDeriver,
    RetrievalCacheService,
    StaleWhileRevalidateController,
    WarmingReport,
)
from retrieval_cache.core.bootstrap import CacheStack, cache_stack
from retrieval_cache.core.config import Settings, get_settings
from retrieval_cache.domain.entities import CacheEntry
from retrieval_cache.domain.exceptions import (
    InvalidScopeError,
    InvalidTTLError,
    RetrievalCacheException,
    ValidationException,
)
from retrieval_cache.domain.value_objects import TenantScope
from retrieval_cache.infrastructure.cache import CacheStore

__all__ = [
    "CacheEntry",
    "CacheStack",
    "CacheStore",
    "CacheWarmingService",
    "InvalidScopeError",
    "InvalidTTLError",
    "InvalidationService",
    "KeyDeriver",
    "RetrievalCacheException",
    "RetrievalCacheService",
    "Settings",
    "StaleWhileRevalidateController",
    "TenantScope",
    "ValidationException",
    "WarmingReport",
    "cache_stack",
    "get_settings",
]
