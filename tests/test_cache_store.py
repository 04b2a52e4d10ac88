"""
Unit tests for the namespaced cache store.
"""
import time

import pytest

from propfeed.core.cache_store import CacheStore
from propfeed.core.errors import CacheError


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestCacheStore:
    """Tests for CacheStore."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def store(self, clock):
        return CacheStore({"properties": 1800, "images": 3600}, clock=clock)

    @pytest.mark.unit
    def test_miss_returns_default_not_error(self, store):
        assert store.get("properties", "missing") is None
        assert store.get("properties", "missing", default="fallback") == "fallback"

    @pytest.mark.unit
    def test_set_and_get(self, store):
        assert store.set("properties", "all", {"count": 3}) is True
        assert store.get("properties", "all") == {"count": 3}
        assert store.exists("properties", "all") is True

    @pytest.mark.unit
    def test_default_ttl_used_for_zero_or_omitted(self, store, clock):
        store.set("properties", "a", 1)
        store.set("properties", "b", 2, ttl_seconds=0)

        assert store.ttl_remaining("properties", "a") == pytest.approx(1800)
        assert store.ttl_remaining("properties", "b") == pytest.approx(1800)

    @pytest.mark.unit
    def test_explicit_ttl_override(self, store, clock):
        store.set("images", "X", ["img"], ttl_seconds=10)

        clock.advance(9.5)
        assert store.get("images", "X") == ["img"]

        clock.advance(0.5)
        assert store.get("images", "X") is None
        assert store.exists("images", "X") is False

    @pytest.mark.unit
    def test_negative_ttl_rejected(self, store):
        assert store.set("properties", "k", 1, ttl_seconds=-5) is False
        assert store.exists("properties", "k") is False

    @pytest.mark.unit
    def test_ttl_remaining_absent_is_minus_one(self, store):
        assert store.ttl_remaining("properties", "nope") == -1

    @pytest.mark.unit
    def test_delete(self, store):
        store.set("properties", "k", 1)

        assert store.delete("properties", "k") is True
        assert store.delete("properties", "k") is False

    @pytest.mark.unit
    def test_namespaces_are_isolated(self, store):
        store.set("properties", "X", "listing")
        store.set("images", "X", "pictures")

        assert store.get("properties", "X") == "listing"
        assert store.get("images", "X") == "pictures"

        removed = store.flush("properties")

        assert removed == 1
        assert store.get("properties", "X") is None
        assert store.get("images", "X") == "pictures"

    @pytest.mark.unit
    def test_unknown_namespace_raises_cache_error(self, store):
        with pytest.raises(CacheError):
            store.get("campaign-content", "k")

    @pytest.mark.unit
    def test_purge_expired(self, store, clock):
        store.set("properties", "old", 1, ttl_seconds=5)
        store.set("properties", "new", 2)
        clock.advance(10)

        assert store.purge_expired() == 1
        assert store.get("properties", "new") == 2

    @pytest.mark.unit
    def test_stats(self, store):
        store.set("properties", "k", 1)
        store.get("properties", "k")
        store.get("properties", "missing")

        stats = store.get_stats()["properties"]

        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["sets"] == 1
        assert stats["entries"] == 1
        assert stats["hit_rate"] == "50.00%"

    @pytest.mark.unit
    def test_invalid_construction(self):
        with pytest.raises(ValueError):
            CacheStore({})
        with pytest.raises(ValueError):
            CacheStore({"properties": 0})


@pytest.mark.unit
def test_value_expires_in_real_time():
    """A value set with TTL=1s is readable at once and gone after 2s."""
    store = CacheStore({"properties": 1800})
    store.set("properties", "short", "value", ttl_seconds=1)

    assert store.get("properties", "short") == "value"

    time.sleep(2)

    assert store.get("properties", "short") is None
