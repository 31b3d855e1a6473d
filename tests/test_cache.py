"""Tests for the LRU response cache."""

from __future__ import annotations

import asyncio

import pytest

from conftest import FakeClock
from operation_gateway.cache import ResponseCache, make_key


def _cache(clock: FakeClock, **kwargs) -> ResponseCache:
    return ResponseCache(clock=clock, **kwargs)


def test_zero_ttl_is_never_returned(clock: FakeClock) -> None:
    cache = _cache(clock)

    cache.set("k", "v", ttl=0)

    assert cache.get("k") is None


def test_positive_ttl_hits_until_expiry(clock: FakeClock) -> None:
    cache = _cache(clock, default_ttl=10)
    cache.set("k", {"v": 1})

    clock.advance(9)
    assert cache.get("k") == {"v": 1}

    clock.advance(1)
    assert cache.get("k") is None
    assert cache.stats()["entries"] == 0


def test_least_recently_used_entry_is_evicted(clock: FakeClock) -> None:
    cache = _cache(clock, max_entries=2)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.get("a")

    cache.set("c", 3)

    assert cache.get("b") is None
    assert cache.get("a") == 1
    assert cache.get("c") == 3
    assert cache.stats()["evictions"] == 1


def test_overwrite_does_not_evict(clock: FakeClock) -> None:
    cache = _cache(clock, max_entries=2)
    cache.set("a", 1)
    cache.set("b", 2)

    cache.set("a", 10)

    assert cache.get("a") == 10
    assert cache.get("b") == 2


def test_stats_and_top_items(clock: FakeClock) -> None:
    cache = _cache(clock)
    cache.set("a", "x")
    cache.set("b", "yy")
    cache.get("a")
    cache.get("a")
    cache.get("b")
    cache.get("missing")

    stats = cache.stats()
    assert stats["hits"] == 3
    assert stats["misses"] == 1
    assert stats["hit_rate"] == 75.0
    assert stats["total_size"] == len('"x"') + len('"yy"')
    assert [item["key"] for item in cache.top_items(1)] == ["a"]


def test_delete_clear_and_invalidate_pattern(clock: FakeClock) -> None:
    cache = _cache(clock)
    cache.set("api_things_get:1", 1)
    cache.set("api_things_get:2", 2)
    cache.set("api_widgets_get:1", 3)

    assert cache.delete("api_things_get:1") is True
    assert cache.delete("api_things_get:1") is False
    assert cache.invalidate_pattern(r"^api_things_") == 1
    assert cache.get("api_widgets_get:1") == 3

    cache.clear()
    assert cache.stats()["entries"] == 0


def test_disabled_cache_stores_nothing(clock: FakeClock) -> None:
    cache = _cache(clock)
    cache.set("a", 1)

    cache.set_enabled(False)
    cache.set("b", 2)

    assert cache.get("a") is None
    assert cache.get("b") is None
    assert cache.stats()["entries"] == 0


def test_sweep_removes_expired_entries(clock: FakeClock) -> None:
    cache = _cache(clock)
    cache.set("short", 1, ttl=1)
    cache.set("long", 2, ttl=100)

    clock.advance(5)

    assert cache.sweep() == 1
    assert cache.stats()["entries"] == 1


@pytest.mark.asyncio
async def test_background_sweeper_runs_and_stops() -> None:
    cache = ResponseCache()
    cache.set("gone", 1, ttl=0)

    cache.start_sweeper(interval=0.01)
    await asyncio.sleep(0.05)
    await cache.stop_sweeper()

    assert cache.stats()["entries"] == 0
    assert cache.stats()["expirations"] >= 1


@pytest.mark.parametrize(
    "method, status, expected",
    [("GET", 200, True), ("get", 204, True), ("GET", 304, False), ("GET", 500, False), ("POST", 200, False)],
)
def test_should_cache(method, status, expected) -> None:
    assert ResponseCache.should_cache(method, status) is expected


def test_make_key_is_order_independent() -> None:
    assert make_key("op", {"b": 1, "a": [1, 2]}) == make_key("op", {"a": [1, 2], "b": 1})
    assert make_key("op", {"a": 1}) != make_key("other", {"a": 1})


def test_health_reports_utilization(clock: FakeClock) -> None:
    cache = _cache(clock, max_entries=4)
    cache.set("a", 1)

    health = cache.health()

    assert health["healthy"] is True
    assert health["utilization"] == 25.0
