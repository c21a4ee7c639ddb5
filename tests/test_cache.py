"""Tests for fos_analytics.cache."""
from __future__ import annotations

from fos_analytics.cache import MetadataCache, TTLCache


class TestTTLCache:
    def test_expiry(self, clock) -> None:
        cache: TTLCache[str, int] = TTLCache(30, clock=clock)
        cache.set("a", 1)
        clock.advance(29.9)
        assert cache.get("a") == 1
        clock.advance(0.1)
        assert cache.get("a") is None
        assert len(cache) == 0

    def test_falsy_values_are_cached(self, clock) -> None:
        cache: TTLCache[str, bool] = TTLCache(60, clock=clock)
        calls: list[int] = []

        def load() -> bool:
            calls.append(1)
            return False

        assert cache.get_or_load("t", load) is False
        assert cache.get_or_load("t", load) is False
        assert len(calls) == 1

    def test_max_entries_evicts_oldest(self, clock) -> None:
        cache: TTLCache[str, int] = TTLCache(60, clock=clock, max_entries=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)
        assert cache.get("a") is None
        assert cache.get("b") == 2
        assert cache.get("c") == 3

    def test_invalidate(self, clock) -> None:
        cache: TTLCache[str, int] = TTLCache(60, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.invalidate("a")
        assert cache.get("a") is None
        cache.invalidate()
        assert len(cache) == 0


def test_metadata_cache_ttls(clock) -> None:
    meta = MetadataCache(clock=clock, table_ttl=60, tag_ttl=60, options_ttl=300)
    meta.tables.set("fos_decisions", True)
    meta.run_logs.set("fos_ingestion_runs", object())
    meta.filter_options.set("options", object())
    clock.advance(61)
    assert meta.tables.get("fos_decisions") is None
    assert meta.run_logs.get("fos_ingestion_runs") is None
    assert meta.filter_options.get("options") is not None
    clock.advance(240)
    assert meta.filter_options.get("options") is None
