"""Cache infrastructure: Redis store, envelope codec and revalidation locks.

CacheStore takes its Redis client and settings by injection; key format
lives in application.services.key_deriver (DRY).
"""

from retrieval_cache.infrastructure.cache.cache_protocol import (
    CacheProtocol,
    RevalidationLockProtocol,
)
from retrieval_cache.infrastructure.cache.envelope import (
    CacheEnvelope,
    decode_entry,
    encode_entry,
)
from retrieval_cache.infrastructure.cache.redis_cache import CacheStore, create_redis_client
from retrieval_cache.infrastructure.cache.revalidation_lock import (
    InMemoryRevalidationLock,
    RedisRevalidationLock,
    lock_key,
)
from retrieval_cache.infrastructure.cache.stats import CacheBackendStats, CacheStats

__all__ = [
    "CacheBackendStats",
    "CacheEnvelope",
    "CacheProtocol",
    "CacheStats",
    "CacheStore",
    "InMemoryRevalidationLock",
    "RedisRevalidationLock",
    "RevalidationLockProtocol",
    "create_redis_client",
    "decode_entry",
    "encode_entry",
    "lock_key",
]
