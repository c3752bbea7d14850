"""Redis-backed envelope cache store.

Wraps every value in a versioned JSON envelope (see envelope.py) and
writes it with a native Redis TTL equal to the envelope TTL, so the
backend self-evicts even when nothing revisits a key.

Every round-trip is bounded by settings.redis_socket_timeout. Backend
failures never propagate: reads degrade to a miss, writes to a no-op,
deletes to 0, and the failure is logged and counted.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, TypeVar

import redis.asyncio as redis

from retrieval_cache.core.config import Settings, get_settings
from retrieval_cache.core.constants import (
    CACHE_KEY_SEP,
    GLOB_METACHARACTERS,
    REVALIDATION_LOCK_SUFFIX,
)
from retrieval_cache.domain.entities import CacheEntry
from retrieval_cache.domain.exceptions import (
    BackendUnavailableError,
    DeserializationError,
    InvalidTTLError,
)
from retrieval_cache.infrastructure.cache.envelope import decode_entry, encode_entry
from retrieval_cache.infrastructure.cache.stats import CacheBackendStats, CacheStats
from retrieval_cache.shared.utils.datetime import epoch_millis

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Minimum gap between reconnect attempts while the backend is marked down.
RECONNECT_BACKOFF_MS = 5_000


def create_redis_client(settings: Settings) -> redis.Redis:
    """Build the shared async Redis client from settings (TLS, auth, timeouts)."""
    return redis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        db=settings.redis_db,
        password=settings.redis_password.get_secret_value() if settings.redis_password else None,
        ssl=settings.redis_tls,
        decode_responses=True,
        # Undecodable bytes become U+FFFD and fail envelope validation as a miss.
        encoding_errors="replace",
        socket_connect_timeout=settings.redis_connect_timeout,
        socket_timeout=settings.redis_socket_timeout,
        socket_keepalive=True,
        max_connections=settings.redis_max_connections,
    )


def _validate_ttl(ttl_seconds: Any) -> int:
    if isinstance(ttl_seconds, bool) or not isinstance(ttl_seconds, int) or ttl_seconds < 1:
        raise InvalidTTLError(ttl_seconds)
    return ttl_seconds


class CacheStore:
    """Async Redis cache store with envelopes, TTLs and graceful degradation.

    The Redis client is a shared, long-lived resource: build it once at
    process start (create_redis_client) and inject it, or let connect()
    build it from settings. Call connect() at startup and disconnect() at
    shutdown.
    """

    def __init__(
        self,
        redis_client: redis.Redis | None = None,
        settings: Settings | None = None,
        clock: Callable[[], int] = epoch_millis,
    ) -> None:
        """Initialize cache store.

        Args:
            redis_client: Optional Redis client (DI and tests).
            settings: Cache settings; defaults to get_settings().
            clock: Returns epoch milliseconds; used for envelope timestamps
                and expiry checks.
        """
        self.redis = redis_client
        self.settings = settings or get_settings()
        self._clock = clock
        self._connected = False
        self._owns_client = redis_client is None
        self._last_connect_attempt_ms: int | None = None
        self._stats = CacheStats()

    @property
    def stats_counters(self) -> CacheStats:
        return self._stats

    def now_ms(self) -> int:
        return self._clock()

    async def connect(self) -> None:
        """Establish the Redis connection. Call on startup.

        A failed connection leaves the store in degraded mode (every read
        misses); later calls retry at most every RECONNECT_BACKOFF_MS.
        """
        if self.redis is None:
            self.redis = create_redis_client(self.settings)
        self._last_connect_attempt_ms = self.now_ms()
        try:
            async with asyncio.timeout(self.settings.redis_connect_timeout):
                await self.redis.ping()
            self._connected = True
            logger.info(
                "Redis cache connected: %s:%s (tls=%s)",
                self.settings.redis_host,
                self.settings.redis_port,
                self.settings.redis_tls,
            )
        except (redis.RedisError, TimeoutError, OSError) as e:
            logger.warning("Redis connection failed: %s. Cache degraded.", e)
            self._connected = False

    async def disconnect(self) -> None:
        """Close the Redis connection if this store created it. Call on shutdown."""
        if self.redis is not None and self._owns_client:
            await self.redis.aclose()
            self.redis = None
            logger.info("Redis cache disconnected")
        self._connected = False

    def is_available(self) -> bool:
        """Return True if Redis is connected and usable."""
        return self._connected and self.redis is not None

    async def _ensure_connected(self) -> bool:
        if self.is_available():
            return True
        if self.redis is None:
            return False
        last = self._last_connect_attempt_ms
        if last is not None and self.now_ms() - last < RECONNECT_BACKOFF_MS:
            return False
        await self.connect()
        return self.is_available()

    async def _execute(
        self,
        operation: str,
        call: Callable[[redis.Redis], Awaitable[T]],
        key: str | None = None,
    ) -> T:
        """Run one bounded backend call.

        Raises:
            BackendUnavailableError: On disconnect, timeout or Redis error.
            DeserializationError: If a reply could not be decoded as text.
        """
        if not await self._ensure_connected():
            raise BackendUnavailableError(operation, "not connected")
        try:
            async with asyncio.timeout(self.settings.redis_socket_timeout):
                return await call(self.redis)
        except TimeoutError as e:
            raise BackendUnavailableError(operation, "timed out") from e
        except (redis.ConnectionError, OSError) as e:
            self._connected = False
            raise BackendUnavailableError(operation, str(e)) from e
        except redis.RedisError as e:
            raise BackendUnavailableError(operation, str(e)) from e
        except UnicodeDecodeError as e:
            raise DeserializationError(key or operation, "stored value is not valid UTF-8") from e

    def _discard(self, error: DeserializationError) -> None:
        self._stats.discarded += 1
        logger.warning(
            "Cache entry discarded for key %s: %s", error.details["key"], error.details["reason"]
        )

    def _decode(self, key: str, raw: str | bytes) -> CacheEntry | None:
        """Decode raw into a live entry; None if malformed, foreign-version or expired."""
        try:
            entry = decode_entry(key, raw, self.settings.cache_schema_version)
        except DeserializationError as e:
            self._discard(e)
            return None
        if entry.is_expired(self.now_ms()):
            return None
        return entry

    async def get(self, key: str) -> CacheEntry | None:
        """Return the live entry for key, or None.

        Args:
            key: Cache key (use KeyDeriver builders).

        Returns:
            CacheEntry, or None on miss, expiry, bad data or outage.
        """
        try:
            raw = await self._execute("get", lambda r: r.get(key), key)
        except BackendUnavailableError as e:
            self._stats.record_error()
            logger.warning("Cache get unavailable for key %s: %s", key, e.details["reason"])
            return None
        except DeserializationError as e:
            self._discard(e)
            raw = None
        entry = self._decode(key, raw) if raw is not None else None
        if entry is None:
            self._stats.record_miss()
            logger.debug("Cache MISS: %s", key)
            return None
        self._stats.record_hit()
        logger.debug("Cache HIT: %s", key)
        return entry

    async def get_many(self, keys: list[str]) -> dict[str, CacheEntry]:
        """Return live entries for keys using MGET; misses are omitted."""
        if not keys:
            return {}
        try:
            values = await self._execute("mget", lambda r: r.mget(keys))
        except BackendUnavailableError as e:
            self._stats.record_error()
            logger.warning("Cache mget unavailable (%s keys): %s", len(keys), e.details["reason"])
            return {}
        except DeserializationError as e:
            # One undecodable value fails the whole MGET reply.
            self._discard(e)
            self._stats.misses += len(keys)
            return {}
        results: dict[str, CacheEntry] = {}
        for key, raw in zip(keys, values):
            entry = self._decode(key, raw) if raw is not None else None
            if entry is None:
                self._stats.record_miss()
            else:
                self._stats.record_hit()
                results[key] = entry
        return results

    def _encode(self, key: str, value: Any, ttl: int) -> str | None:
        entry = CacheEntry(
            data=value,
            timestamp=self.now_ms(),
            ttl=ttl,
            version=self.settings.cache_schema_version,
        )
        try:
            return encode_entry(entry)
        except TypeError:
            logger.exception("Cache value for key %s is not serializable; skipped", key)
            return None

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> bool:
        """Store value in a fresh envelope with TTL. Returns True on success.

        Args:
            key: Cache key.
            value: JSON-serializable value.
            ttl_seconds: Time-to-live (default settings.cache_default_ttl).

        Raises:
            InvalidTTLError: If ttl_seconds is not a positive int.
        """
        ttl = _validate_ttl(
            self.settings.cache_default_ttl if ttl_seconds is None else ttl_seconds
        )
        serialized = self._encode(key, value, ttl)
        if serialized is None:
            return False
        try:
            await self._execute("set", lambda r: r.setex(key, ttl, serialized))
        except BackendUnavailableError as e:
            self._stats.record_error()
            logger.warning("Cache set unavailable for key %s: %s", key, e.details["reason"])
            return False
        logger.debug("Cache SET: %s (TTL: %ss)", key, ttl)
        return True

    async def set_many(self, items: Mapping[str, Any], ttl_seconds: int | None = None) -> int:
        """Store several values with one TTL in a single pipeline round-trip."""
        ttl = _validate_ttl(
            self.settings.cache_default_ttl if ttl_seconds is None else ttl_seconds
        )
        encoded = {
            key: serialized
            for key, value in items.items()
            if (serialized := self._encode(key, value, ttl)) is not None
        }
        if not encoded:
            return 0

        async def _pipeline(r: redis.Redis) -> list[Any]:
            async with r.pipeline(transaction=False) as pipe:
                for key, serialized in encoded.items():
                    pipe.setex(key, ttl, serialized)
                return await pipe.execute()

        try:
            await self._execute("set_many", _pipeline)
        except BackendUnavailableError as e:
            self._stats.record_error()
            logger.warning("Cache set_many unavailable (%s keys): %s", len(encoded), e.details["reason"])
            return 0
        return len(encoded)

    async def delete(self, key: str) -> bool:
        """Remove key from cache. Returns True if a key was removed."""
        try:
            removed = await self._execute("delete", lambda r: r.delete(key))
        except BackendUnavailableError as e:
            self._stats.record_error()
            logger.warning("Cache delete unavailable for key %s: %s", key, e.details["reason"])
            return False
        logger.debug("Cache DELETE: %s", key)
        return int(removed or 0) > 0

    async def delete_many(self, keys: list[str]) -> int:
        """Remove several keys. Returns how many existed."""
        if not keys:
            return 0
        try:
            removed = await self._execute("delete_many", lambda r: r.delete(*keys))
        except BackendUnavailableError as e:
            self._stats.record_error()
            logger.warning("Cache delete_many unavailable (%s keys): %s", len(keys), e.details["reason"])
            return 0
        return int(removed or 0)

    def _is_namespaced_pattern(self, pattern: str) -> bool:
        """Pattern must pin the key prefix and a literal scope kind."""
        parts = pattern.split(CACHE_KEY_SEP)
        if len(parts) < 3 or parts[0] != self.settings.cache_key_prefix:
            return False
        return bool(parts[1]) and not any(ch in GLOB_METACHARACTERS for ch in parts[1])

    async def delete_by_pattern(self, pattern: str) -> int:
        """Delete all keys matching pattern using SCAN + batched UNLINK (non-blocking).

        Cost is a scan of the whole keyspace, so callers pass tenant- or
        entity-scoped patterns only; patterns outside the key namespace are
        refused. Each SCAN page and each UNLINK batch is bounded on its own;
        if the backend fails midway, the keys deleted so far are reported.

        Revalidation lock keys under the pattern are removed too but are not
        counted.

        Args:
            pattern: Redis SCAN match pattern (e.g. mindshop:merchant:m1:*).

        Returns:
            Number of cache entries deleted.
        """
        if not self._is_namespaced_pattern(pattern):
            logger.warning("Cache delete_by_pattern refused unscoped pattern %r", pattern)
            return 0
        chunk_size = self.settings.delete_pattern_batch_size
        lock_suffix = f"{CACHE_KEY_SEP}{REVALIDATION_LOCK_SUFFIX}"

        async def _unlink(r: redis.Redis, chunk: list[str]) -> int:
            entries = [k for k in chunk if not k.endswith(lock_suffix)]
            locks = [k for k in chunk if k.endswith(lock_suffix)]
            async with r.pipeline(transaction=False) as pipe:
                if entries:
                    pipe.unlink(*entries)
                if locks:
                    pipe.unlink(*locks)
                results = await pipe.execute()
            return int(results[0] or 0) if entries else 0

        deleted = 0
        cursor = 0
        try:
            while True:
                cursor, page = await self._execute(
                    "scan",
                    lambda r, c=cursor: r.scan(cursor=c, match=pattern, count=chunk_size),
                )
                for start in range(0, len(page), chunk_size):
                    chunk = page[start : start + chunk_size]
                    deleted += await self._execute("unlink", lambda r, c=chunk: _unlink(r, c))
                if int(cursor) == 0:
                    break
        except BackendUnavailableError as e:
            self._stats.record_error()
            logger.warning(
                "Cache delete_by_pattern interrupted for %s after %s keys: %s",
                pattern,
                deleted,
                e.details["reason"],
            )
            return deleted
        if deleted > 0:
            logger.info("Cache INVALIDATE: %s (%s keys)", pattern, deleted)
        return deleted

    async def incr_by(self, key: str, amount: int = 1, ttl_seconds: int | None = None) -> int:
        """Atomically add amount to a raw counter, optionally refreshing its TTL.

        Counters are stored without an envelope. Returns the new value, or 0
        when the backend is unavailable.
        """
        if ttl_seconds is not None:
            _validate_ttl(ttl_seconds)

        async def _incr(r: redis.Redis) -> int:
            async with r.pipeline(transaction=True) as pipe:
                pipe.incrby(key, amount)
                if ttl_seconds is not None:
                    pipe.expire(key, ttl_seconds)
                results = await pipe.execute()
            return int(results[0])

        try:
            return await self._execute("incr_by", _incr)
        except BackendUnavailableError as e:
            self._stats.record_error()
            logger.warning("Cache incr_by unavailable for key %s: %s", key, e.details["reason"])
            return 0

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        """Reset the TTL of an existing key. Returns False if it is missing or the backend is down.

        Raises:
            InvalidTTLError: If ttl_seconds is not a positive int.
        """
        ttl = _validate_ttl(ttl_seconds)
        try:
            updated = await self._execute("expire", lambda r: r.expire(key, ttl))
        except BackendUnavailableError as e:
            self._stats.record_error()
            logger.warning("Cache expire unavailable for key %s: %s", key, e.details["reason"])
            return False
        return bool(updated)

    async def get_raw(self, key: str) -> str | None:
        """Return the raw stored string (e.g. a counter) without envelope decoding."""
        try:
            return await self._execute("get_raw", lambda r: r.get(key), key)
        except BackendUnavailableError as e:
            self._stats.record_error()
            logger.warning("Cache get_raw unavailable for key %s: %s", key, e.details["reason"])
            return None
        except DeserializationError as e:
            self._discard(e)
            return None

    async def stats(self) -> CacheBackendStats:
        """Return key count, memory usage and hit rate reported by the backend."""

        async def _info(r: redis.Redis) -> tuple[dict, dict, dict]:
            return (
                await r.info("memory"),
                await r.info("keyspace"),
                await r.info("stats"),
            )

        try:
            memory, keyspace, server_stats = await self._execute("stats", _info)
        except BackendUnavailableError as e:
            self._stats.record_error()
            logger.warning("Cache stats unavailable: %s", e.details["reason"])
            return CacheBackendStats(client=self._stats)

        db_info = keyspace.get(f"db{self.settings.redis_db}") or {}
        hits = server_stats.get("keyspace_hits")
        misses = server_stats.get("keyspace_misses")
        server_hit_rate: float | None = None
        if hits is not None and misses is not None:
            total = int(hits) + int(misses)
            server_hit_rate = (int(hits) / total) * 100 if total > 0 else 0.0
        return CacheBackendStats(
            total_keys=int(db_info.get("keys", 0)),
            memory_usage=str(memory.get("used_memory_human", "unknown")).strip(),
            server_hit_rate=server_hit_rate,
            client=self._stats,
        )

    async def health_check(self) -> bool:
        """Return True iff PING succeeds within settings.health_check_timeout."""
        if self.redis is None:
            return False
        try:
            async with asyncio.timeout(self.settings.health_check_timeout):
                pong = await self.redis.ping()
        except (redis.RedisError, TimeoutError, OSError) as e:
            logger.warning("Redis health check failed: %s", e)
            self._connected = False
            return False
        self._connected = bool(pong)
        return self._connected
