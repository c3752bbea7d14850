"""Application services: key derivation, stale-while-revalidate, facade, invalidation, warming."""

from retrieval_cache.application.services.cache_warming_service import (
    CacheWarmingService,
    WarmingReport,
)
from retrieval_cache.application.services.invalidation_service import InvalidationService
from retrieval_cache.application.services.key_deriver import (
    HashAlgorithm,
    KeyDeriver,
    SHA256Algorithm,
)
from retrieval_cache.application.services.retrieval_cache_service import (
    RetrievalCacheService,
)
from retrieval_cache.application.services.revalidation_service import (
    StaleWhileRevalidateController,
)

__all__ = [
    "CacheWarmingService",
    "HashAlgorithm",
    "InvalidationService",
    "KeyDeriver",
    "RetrievalCacheService",
    "SHA256Algorithm",
    "StaleWhileRevalidateController",
    "WarmingReport",
]
