"""Tests for CacheEntry freshness rules."""

import pytest

from retrieval_cache.domain.entities import CacheEntry
from retrieval_cache.domain.exceptions import InvalidTTLError

T0 = 1_700_000_000_000


def _entry(ttl: int = 60) -> CacheEntry:
    return CacheEntry(data={"x": 1}, timestamp=T0, ttl=ttl, version="1")


class TestCacheEntry:
    def test_ttl_must_be_positive(self) -> None:
        with pytest.raises(InvalidTTLError) as exc_info:
            _entry(ttl=0)
        assert exc_info.value.details["field"] == "ttl"

    def test_age_never_negative(self) -> None:
        assert _entry().age_ms(T0 - 5_000) == 0

    def test_expired_at_ttl_boundary(self) -> None:
        entry = _entry(ttl=60)
        assert not entry.is_expired(T0 + 59_999)
        assert entry.is_expired(T0 + 60_000)

    def test_stale_window(self) -> None:
        entry = _entry(ttl=60)
        assert not entry.is_stale(T0 + 49_999, grace_seconds=10)
        assert entry.is_stale(T0 + 50_000, grace_seconds=10)

    def test_zero_grace_is_stale_only_at_expiry(self) -> None:
        entry = _entry(ttl=60)
        assert not entry.is_stale(T0 + 59_999, grace_seconds=0)
        assert entry.is_stale(T0 + 60_000, grace_seconds=0)

    def test_grace_at_or_above_ttl_always_stale(self) -> None:
        assert _entry(ttl=60).is_stale(T0, grace_seconds=60)

    def test_negative_grace_rejected(self) -> None:
        with pytest.raises(InvalidTTLError):
            _entry().is_stale(T0, grace_seconds=-1)
