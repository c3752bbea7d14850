"""CacheStore unit tests: envelopes, TTL expiry, degradation and pattern deletes."""

import json

import pytest

from retrieval_cache.core.config import Settings
from retrieval_cache.domain.exceptions import InvalidTTLError
from retrieval_cache.infrastructure.cache import CacheStore, create_redis_client, lock_key

KEY = "mindshop:merchant:m1:retrieval:abc"


class TestRoundTrip:
    async def test_set_then_get_returns_value(self, store: CacheStore) -> None:
        value = [{"id": "p1", "score": 0.9}, {"id": "p2", "score": 0.7}]
        assert await store.set(KEY, value, 60) is True
        entry = await store.get(KEY)
        assert entry is not None
        assert entry.data == value
        assert entry.ttl == 60
        assert entry.version == "1"
        assert entry.timestamp == store.now_ms()

    async def test_native_ttl_matches_envelope(self, store: CacheStore, fake_redis) -> None:
        await store.set(KEY, "v", 90)
        assert await fake_redis.ttl(KEY) == 90
        assert json.loads(fake_redis.data[KEY])["ttl"] == 90

    async def test_default_ttl_applied(self, store: CacheStore, settings: Settings) -> None:
        await store.set(KEY, "v")
        entry = await store.get(KEY)
        assert entry is not None and entry.ttl == settings.cache_default_ttl

    async def test_missing_key_is_miss(self, store: CacheStore) -> None:
        assert await store.get(KEY) is None
        assert store.stats_counters.misses == 1

    @pytest.mark.parametrize("ttl", [0, -1, 1.5, True])
    async def test_invalid_ttl_rejected(self, store: CacheStore, ttl) -> None:
        with pytest.raises(InvalidTTLError):
            await store.set(KEY, "v", ttl)

    async def test_unserializable_value_skipped(self, store: CacheStore, fake_redis) -> None:
        assert await store.set(KEY, {"x": object()}, 60) is False
        assert KEY not in fake_redis.data


class TestExpiry:
    async def test_entry_expires_after_ttl(self, store: CacheStore, clock) -> None:
        await store.set(KEY, "v", 1)
        clock.advance(1.001)
        assert await store.get(KEY) is None

    async def test_envelope_expiry_applies_without_native_ttl(
        self, store: CacheStore, fake_redis, clock
    ) -> None:
        """A writer that skipped the native TTL still reads as expired."""
        await store.set(KEY, "v", 1)
        fake_redis.expires_at.pop(KEY)
        clock.advance(2)
        assert await store.get(KEY) is None


class TestDiscardedEntries:
    async def test_malformed_json_is_miss(self, store: CacheStore, fake_redis) -> None:
        fake_redis.data[KEY] = "{not json"
        assert await store.get(KEY) is None
        assert store.stats_counters.discarded == 1

    async def test_other_schema_version_is_miss(self, store: CacheStore, fake_redis, clock) -> None:
        fake_redis.data[KEY] = json.dumps(
            {"data": "old", "timestamp": clock(), "ttl": 60, "version": "0"}
        )
        assert await store.get(KEY) is None
        # Poisoned entries are left to expire, not deleted.
        assert KEY in fake_redis.data

    async def test_non_utf8_value_is_miss(self, store: CacheStore, fake_redis) -> None:
        await store.set(KEY, "v", 60)
        fake_redis.undecodable.add(KEY)
        assert await store.get(KEY) is None
        assert await store.get_raw(KEY) is None
        assert await store.get_many([KEY, "mindshop:merchant:m1:retrieval:other"]) == {}
        assert store.stats_counters.discarded == 3
        assert store.stats_counters.errors == 0
        assert store.is_available()

    def test_client_replaces_undecodable_bytes(self, settings: Settings) -> None:
        client = create_redis_client(settings)
        assert client.connection_pool.connection_kwargs["encoding_errors"] == "replace"

    async def test_replacement_characters_read_as_miss(self, store: CacheStore, fake_redis) -> None:
        """What a replacing client hands back for b"\\xff\\xfe{not utf8"."""
        fake_redis.data[KEY] = "\ufffd\ufffd{not utf8"
        assert await store.get(KEY) is None
        assert store.stats_counters.discarded == 1


class TestBulk:
    async def test_get_many_omits_misses(self, store: CacheStore) -> None:
        await store.set_many({"mindshop:merchant:m1:q:a": 1, "mindshop:merchant:m1:q:b": 2}, 60)
        found = await store.get_many(
            ["mindshop:merchant:m1:q:a", "mindshop:merchant:m1:q:b", "mindshop:merchant:m1:q:c"]
        )
        assert {k: e.data for k, e in found.items()} == {
            "mindshop:merchant:m1:q:a": 1,
            "mindshop:merchant:m1:q:b": 2,
        }

    async def test_get_many_empty(self, store: CacheStore) -> None:
        assert await store.get_many([]) == {}

    async def test_delete_and_delete_many(self, store: CacheStore) -> None:
        await store.set_many({"mindshop:merchant:m1:q:a": 1, "mindshop:merchant:m1:q:b": 2}, 60)
        assert await store.delete("mindshop:merchant:m1:q:a") is True
        assert await store.delete("mindshop:merchant:m1:q:a") is False
        assert await store.delete_many(["mindshop:merchant:m1:q:b", "missing"]) == 1


class TestDeleteByPattern:
    async def test_deletes_only_matching_keys(self, store: CacheStore, fake_redis) -> None:
        for i in range(5):
            await store.set(f"mindshop:merchant:m1:retrieval:{i}", i, 60)
        await store.set("mindshop:merchant:m2:retrieval:0", 0, 60)
        # batch size 2 forces several UNLINK pipelines
        assert await store.delete_by_pattern("mindshop:merchant:m1:*") == 5
        assert list(fake_redis.data) == ["mindshop:merchant:m2:retrieval:0"]

    @pytest.mark.parametrize("pattern", ["*", "mindshop:*", "other:merchant:m1:*", "mindshop:*:m1:*"])
    async def test_unscoped_pattern_refused(self, store: CacheStore, fake_redis, pattern: str) -> None:
        await store.set(KEY, "v", 60)
        assert await store.delete_by_pattern(pattern) == 0
        assert KEY in fake_redis.data

    async def test_no_matches(self, store: CacheStore) -> None:
        assert await store.delete_by_pattern("mindshop:merchant:nobody:*") == 0

    async def test_revalidation_locks_removed_but_not_counted(
        self, store: CacheStore, fake_redis
    ) -> None:
        await store.set(KEY, "v", 60)
        await fake_redis.set(lock_key(KEY), "owner", nx=True, ex=180)
        assert await store.delete_by_pattern("mindshop:merchant:m1:*") == 1
        assert fake_redis.data == {}

    async def test_outage_midway_reports_keys_already_deleted(
        self, store: CacheStore, fake_redis
    ) -> None:
        for i in range(5):
            await store.set(f"mindshop:merchant:m1:retrieval:{i}", i, 60)
        fake_redis.unlink_budget = 1
        assert await store.delete_by_pattern("mindshop:merchant:m1:*") == 2
        assert len(fake_redis.data) == 3
        assert store.stats_counters.errors == 1


class TestGracefulDegradation:
    async def test_failing_backend_never_raises(self, store: CacheStore, fake_redis) -> None:
        await store.set(KEY, "v", 60)
        fake_redis.fail = True
        assert await store.get(KEY) is None
        assert await store.set(KEY, "v2", 60) is False
        assert await store.get_many([KEY]) == {}
        assert await store.set_many({KEY: "v"}, 60) == 0
        assert await store.delete(KEY) is False
        assert await store.delete_by_pattern("mindshop:merchant:m1:*") == 0
        assert await store.incr_by("mindshop:merchant:m1:counter") == 0
        assert store.stats_counters.errors == 7
        assert not store.is_available()

    async def test_hanging_backend_times_out_as_miss(self, store: CacheStore, fake_redis) -> None:
        fake_redis.hang = True
        assert await store.get(KEY) is None
        assert await store.set(KEY, "v", 60) is False

    async def test_reconnects_after_backoff(self, store: CacheStore, fake_redis, clock) -> None:
        fake_redis.fail = True
        assert await store.get(KEY) is None
        fake_redis.fail = False
        # Still inside the reconnect backoff window.
        assert await store.set(KEY, "v", 60) is False
        clock.advance(6)
        assert await store.set(KEY, "v", 60) is True
        assert store.is_available()

    async def test_connect_failure_leaves_store_degraded(
        self, fake_redis, settings: Settings, clock
    ) -> None:
        fake_redis.fail = True
        degraded = CacheStore(redis_client=fake_redis, settings=settings, clock=clock)
        await degraded.connect()
        assert not degraded.is_available()
        assert await degraded.get(KEY) is None

    async def test_health_check(self, store: CacheStore, fake_redis) -> None:
        assert await store.health_check() is True
        fake_redis.fail = True
        assert await store.health_check() is False
        assert not store.is_available()

    async def test_store_without_client_is_unhealthy(self, settings: Settings) -> None:
        assert await CacheStore(settings=settings).health_check() is False


class TestCountersAndStats:
    async def test_incr_by_sets_ttl(self, store: CacheStore, fake_redis) -> None:
        key = "mindshop:merchant:m1:counter"
        assert await store.incr_by(key, 2, ttl_seconds=30) == 2
        assert await store.incr_by(key) == 3
        assert await store.get_raw(key) == "3"
        assert await fake_redis.ttl(key) == 30

    async def test_expire_refreshes_ttl_without_changing_value(
        self, store: CacheStore, fake_redis
    ) -> None:
        key = "mindshop:merchant:m1:counter"
        await store.incr_by(key, 5, ttl_seconds=30)
        assert await store.expire(key, 300) is True
        assert await store.get_raw(key) == "5"
        assert await fake_redis.ttl(key) == 300

    async def test_expire_missing_key_or_outage(self, store: CacheStore, fake_redis) -> None:
        assert await store.expire("mindshop:merchant:m1:nothing", 60) is False
        await store.incr_by("mindshop:merchant:m1:counter")
        fake_redis.fail = True
        assert await store.expire("mindshop:merchant:m1:counter", 60) is False
        assert store.stats_counters.errors == 1

    @pytest.mark.parametrize("ttl", [0, -5, 1.5])
    async def test_expire_rejects_invalid_ttl(self, store: CacheStore, ttl) -> None:
        with pytest.raises(InvalidTTLError):
            await store.expire("mindshop:merchant:m1:counter", ttl)

    async def test_stats_reports_backend_and_client_counters(self, store: CacheStore) -> None:
        await store.set(KEY, "v", 60)
        await store.get(KEY)
        await store.get("mindshop:merchant:m1:retrieval:missing")
        stats = await store.stats()
        assert stats.total_keys == 1
        assert stats.memory_usage == "1.02M"
        assert stats.server_hit_rate == 50.0
        assert stats.client.hits == 1
        assert stats.client.misses == 1
        assert stats.client.hit_rate == 0.5
        store.stats_counters.reset()
        assert store.stats_counters.total_requests == 0

    async def test_stats_when_unavailable(self, store: CacheStore, fake_redis) -> None:
        fake_redis.fail = True
        stats = await store.stats()
        assert stats.total_keys == 0
        assert stats.server_hit_rate is None

    async def test_disconnect_keeps_injected_client_open(self, store: CacheStore, fake_redis) -> None:
        await store.disconnect()
        assert not fake_redis.closed
        assert not store.is_available()
