"""Cache stack bootstrap: startup and shutdown.

Single place for wiring the Redis client, store, revalidation lock and
services, and for tearing them down in the right order. No cache logic
here. Host processes (API workers, batch jobs, scripts) enter
cache_stack() once and share the yielded CacheStack.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

import redis.asyncio as redis

from retrieval_cache.application.services import (
    CacheWarmingService,
    InvalidationService,
    KeyDeriver,
    RetrievalCacheService,
    StaleWhileRevalidateController,
)
from retrieval_cache.application.services.cache_warming_service import RetrievalLoader
from retrieval_cache.core.config import Settings, get_settings
from retrieval_cache.infrastructure.cache import (
    CacheStore,
    InMemoryRevalidationLock,
    RedisRevalidationLock,
    RevalidationLockProtocol,
    create_redis_client,
)
from retrieval_cache.shared.telemetry.telemetry import TelemetryConfig

logger = logging.getLogger(__name__)


@dataclass
class CacheStack:
    """Everything a host process needs to use the cache."""

    settings: Settings
    store: CacheStore
    keys: KeyDeriver
    controller: StaleWhileRevalidateController
    cache: RetrievalCacheService
    invalidation: InvalidationService
    warming: CacheWarmingService | None = None
    telemetry: TelemetryConfig | None = None


def build_lock(settings: Settings, redis_client: redis.Redis) -> RevalidationLockProtocol:
    """Return the revalidation lock selected by settings.revalidation_lock_backend."""
    if settings.revalidation_lock_backend == "memory":
        return InMemoryRevalidationLock(ttl_seconds=settings.revalidation_lock_ttl)
    return RedisRevalidationLock(
        redis_client,
        ttl_seconds=settings.revalidation_lock_ttl,
        timeout_seconds=settings.redis_socket_timeout,
    )


@asynccontextmanager
async def cache_stack(
    settings: Settings | None = None,
    redis_client: redis.Redis | None = None,
    loader: RetrievalLoader | None = None,
) -> AsyncIterator[CacheStack]:
    """Run startup then yield the stack; on exit run shutdown.

    Startup order: telemetry (if enabled), Redis client, store connect,
    lock and services. A cache warming service is only built when a
    retrieval loader is supplied. Shutdown order: scheduled warming,
    pending revalidations, store disconnect, client close (if created
    here), telemetry shutdown.

    Args:
        settings: Cache settings; defaults to get_settings().
        redis_client: Shared client to reuse; the caller keeps ownership.
        loader: Retrieval loader used by cache warming.
    """
    settings = settings or get_settings()

    # ---- Startup ----
    telemetry: TelemetryConfig | None = None
    if settings.telemetry_enabled:
        telemetry = TelemetryConfig.from_settings(settings)
        telemetry.setup()

    owns_client = redis_client is None
    client = redis_client if redis_client is not None else create_redis_client(settings)
    # The store never closes a client it was handed; this context closes its own.
    store = CacheStore(redis_client=client, settings=settings)
    await store.connect()

    keys = KeyDeriver(settings.cache_key_prefix)
    controller = StaleWhileRevalidateController(store, build_lock(settings, client))
    stack = CacheStack(
        settings=settings,
        store=store,
        keys=keys,
        controller=controller,
        cache=RetrievalCacheService(store, keys, controller, settings),
        invalidation=InvalidationService(store, keys),
        warming=None,
        telemetry=telemetry,
    )
    if loader is not None:
        stack.warming = CacheWarmingService(
            stack.cache,
            loader,
            concurrency=settings.cache_warming_concurrency,
            interval_seconds=settings.cache_warming_interval,
        )

    try:
        yield stack
    finally:
        # ---- Shutdown ----
        if stack.warming is not None:
            await stack.warming.stop()
        await controller.aclose()
        await store.disconnect()
        if owns_client:
            await client.aclose()
            logger.info("Redis client closed")
        if telemetry is not None:
            telemetry.shutdown()
