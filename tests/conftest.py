"""Pytest configuration and fixtures for the retrieval cache.

Unit tests run against FakeRedis, an in-memory stand-in for the subset of
the redis.asyncio client the cache uses. FakeRedis and CacheStore share a
FakeClock so TTL expiry is driven by clock.advance() instead of sleeping.
Tests marked requires_redis talk to a real server instead.
"""

import asyncio
import fnmatch
import uuid
from collections.abc import AsyncIterator
from typing import Any

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from retrieval_cache.application.services import (
    InvalidationService,
    KeyDeriver,
    RetrievalCacheService,
    StaleWhileRevalidateController,
)
from retrieval_cache.core.config import Settings
from retrieval_cache.infrastructure.cache import CacheStore, RedisRevalidationLock

_START_MS = 1_700_000_000_000


class FakeClock:
    """Settable epoch-millisecond clock."""

    def __init__(self, now_ms: int = _START_MS) -> None:
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, seconds: float) -> None:
        self.now_ms += int(seconds * 1000)


class FakePipeline:
    """Queues commands and runs them on execute(), like redis.asyncio.client.Pipeline."""

    def __init__(self, redis: "FakeRedis") -> None:
        self._redis = redis
        self._commands: list[tuple[str, tuple[Any, ...], dict[str, Any]]] = []

    async def __aenter__(self) -> "FakePipeline":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self._commands = []

    def __getattr__(self, name: str) -> Any:
        def _queue(*args: Any, **kwargs: Any) -> "FakePipeline":
            self._commands.append((name, args, kwargs))
            return self

        return _queue

    async def execute(self) -> list[Any]:
        self._redis._check()
        results = []
        for name, args, kwargs in self._commands:
            results.append(await getattr(self._redis, name)(*args, **kwargs))
        self._commands = []
        return results


class FakeRedis:
    """In-memory async Redis double with per-key expiry on a FakeClock.

    Set fail=True to make every command raise ConnectionError, or
    hang=True to make every command block (exercises client timeouts).
    Keys in undecodable make GET/MGET raise UnicodeDecodeError the way a
    decode_responses client does for non-UTF-8 bytes. unlink_budget, when
    set, is the number of UNLINK calls allowed before the connection drops.
    """

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.data: dict[str, str] = {}
        self.expires_at: dict[str, int] = {}
        self.fail = False
        self.hang = False
        self.closed = False
        self.keyspace_hits = 0
        self.keyspace_misses = 0
        self.undecodable: set[str] = set()
        self.unlink_budget: int | None = None
        self._scan_cursors: dict[int, str] = {}
        self._next_cursor = 0

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("Connection refused")

    async def _enter(self) -> None:
        if self.hang:
            await asyncio.sleep(3600)
        self._check()

    def _purge(self, key: str) -> None:
        deadline = self.expires_at.get(key)
        if deadline is not None and self.clock() >= deadline:
            self.data.pop(key, None)
            self.expires_at.pop(key, None)

    def _live_keys(self) -> list[str]:
        for key in list(self.data):
            self._purge(key)
        return list(self.data)

    def _store(self, key: str, value: Any, ex: int | None) -> None:
        self.data[key] = str(value)
        if ex is None:
            self.expires_at.pop(key, None)
        else:
            self.expires_at[key] = self.clock() + ex * 1000

    async def ping(self) -> bool:
        await self._enter()
        return True

    def _check_decodable(self, keys: list[str]) -> None:
        if any(key in self.undecodable for key in keys):
            raise UnicodeDecodeError("utf-8", b"\xff\xfe", 0, 1, "invalid start byte")

    async def get(self, key: str) -> str | None:
        await self._enter()
        self._check_decodable([key])
        self._purge(key)
        value = self.data.get(key)
        if value is None:
            self.keyspace_misses += 1
        else:
            self.keyspace_hits += 1
        return value

    async def mget(self, keys: list[str]) -> list[str | None]:
        await self._enter()
        self._check_decodable(keys)
        for key in keys:
            self._purge(key)
        return [self.data.get(key) for key in keys]

    async def set(
        self, key: str, value: Any, nx: bool = False, ex: int | None = None
    ) -> bool | None:
        await self._enter()
        self._purge(key)
        if nx and key in self.data:
            return None
        self._store(key, value, ex)
        return True

    async def setex(self, key: str, ttl: int, value: Any) -> bool:
        await self._enter()
        self._store(key, value, ttl)
        return True

    async def delete(self, *keys: str) -> int:
        await self._enter()
        removed = 0
        for key in keys:
            self._purge(key)
            if self.data.pop(key, None) is not None:
                removed += 1
            self.expires_at.pop(key, None)
        return removed

    async def unlink(self, *keys: str) -> int:
        if self.unlink_budget is not None:
            if self.unlink_budget == 0:
                raise RedisConnectionError("Connection reset by peer")
            self.unlink_budget -= 1
        return await self.delete(*keys)

    async def incrby(self, key: str, amount: int = 1) -> int:
        await self._enter()
        self._purge(key)
        value = int(self.data.get(key, "0")) + amount
        self.data[key] = str(value)
        return value

    async def expire(self, key: str, ttl: int) -> bool:
        await self._enter()
        if key not in self.data:
            return False
        self.expires_at[key] = self.clock() + ttl * 1000
        return True

    async def ttl(self, key: str) -> int:
        self._purge(key)
        if key not in self.data:
            return -2
        deadline = self.expires_at.get(key)
        if deadline is None:
            return -1
        return (deadline - self.clock()) // 1000

    async def scan(
        self, cursor: int = 0, match: str | None = None, count: int | None = None
    ) -> tuple[int, list[str]]:
        """Pages through matching keys in sorted order; keys deleted mid-scan are not skipped."""
        await self._enter()
        after = self._scan_cursors.pop(cursor, None) if cursor else None
        keys = sorted(
            key
            for key in self._live_keys()
            if (match is None or fnmatch.fnmatchcase(key, match)) and (after is None or key > after)
        )
        page = keys[: count or 10]
        if len(page) == len(keys):
            return 0, page
        self._next_cursor += 1
        self._scan_cursors[self._next_cursor] = page[-1]
        return self._next_cursor, page

    async def eval(self, script: str, numkeys: int, *keys_and_args: Any) -> int:
        """Only the compare-and-delete release script is supported."""
        await self._enter()
        key, token = keys_and_args[0], keys_and_args[numkeys]
        self._purge(key)
        if self.data.get(key) == token:
            return await self.delete(key)
        return 0

    async def info(self, section: str | None = None) -> dict[str, Any]:
        await self._enter()
        if section == "memory":
            return {"used_memory_human": "1.02M"}
        if section == "keyspace":
            keys = self._live_keys()
            return {"db0": {"keys": len(keys), "expires": len(self.expires_at)}} if keys else {}
        if section == "stats":
            return {
                "keyspace_hits": self.keyspace_hits,
                "keyspace_misses": self.keyspace_misses,
            }
        return {}

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_redis(clock: FakeClock) -> FakeRedis:
    return FakeRedis(clock)


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment, with short timeouts for outage tests."""
    return Settings(
        _env_file=None,
        cache_key_prefix="mindshop",
        redis_socket_timeout=0.2,
        redis_connect_timeout=0.2,
        health_check_timeout=0.2,
        delete_pattern_batch_size=2,
        telemetry_enabled=False,
    )


@pytest.fixture
async def store(
    fake_redis: FakeRedis, settings: Settings, clock: FakeClock
) -> AsyncIterator[CacheStore]:
    cache_store = CacheStore(redis_client=fake_redis, settings=settings, clock=clock)
    await cache_store.connect()
    yield cache_store
    await cache_store.disconnect()


@pytest.fixture
def key_deriver(settings: Settings) -> KeyDeriver:
    return KeyDeriver(settings.cache_key_prefix)


@pytest.fixture
def lock(fake_redis: FakeRedis, settings: Settings) -> RedisRevalidationLock:
    return RedisRevalidationLock(
        fake_redis,
        ttl_seconds=settings.revalidation_lock_ttl,
        timeout_seconds=settings.redis_socket_timeout,
    )


@pytest.fixture
async def controller(
    store: CacheStore, lock: RedisRevalidationLock
) -> AsyncIterator[StaleWhileRevalidateController]:
    swr = StaleWhileRevalidateController(store, lock)
    yield swr
    await swr.aclose()


@pytest.fixture
def cache_service(
    store: CacheStore,
    key_deriver: KeyDeriver,
    controller: StaleWhileRevalidateController,
    settings: Settings,
) -> RetrievalCacheService:
    return RetrievalCacheService(store, key_deriver, controller, settings)


@pytest.fixture
def invalidation(store: CacheStore, key_deriver: KeyDeriver) -> InvalidationService:
    return InvalidationService(store, key_deriver)


@pytest.fixture
async def live_store() -> AsyncIterator[CacheStore]:
    """CacheStore against a real Redis (REDIS_HOST, REDIS_PORT, ...).

    Skips when Redis is not reachable. Keys use a random prefix and are
    removed after the test. Use @pytest.mark.requires_redis on tests that
    need this fixture; run without Redis via: pytest -m 'not requires_redis'.
    """
    prefix = f"test{uuid.uuid4().hex[:12]}"
    live = CacheStore(settings=Settings(cache_key_prefix=prefix, redis_connect_timeout=1.0))
    await live.connect()
    if not live.is_available():
        await live.disconnect()
        pytest.skip("Redis not reachable: set REDIS_HOST and REDIS_PORT to run integration tests")
    yield live
    await live.delete_by_pattern(f"{prefix}:merchant:*")
    await live.disconnect()
