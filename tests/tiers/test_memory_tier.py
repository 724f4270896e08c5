"""Tests for the process-local L1 tier."""

import threading

import pytest

from tiercache.entry import CacheEntry, Tier
from tiercache.eviction import FIFOPolicy, LRUPolicy
from tiercache.exceptions import ConfigurationError, VersionConflictError
from tiercache.tiers.memory import MemoryTier


def _entry(key: str, version: int = 1, value: bytes = b"v") -> CacheEntry:
    return CacheEntry(key=key, value=value, version=version)


class TestMemoryTierBasics:
    def test_put_and_get(self) -> None:
        tier = MemoryTier(4)
        tier.put(_entry("a", value=b"alpha"))
        got = tier.get("a")
        assert got is not None
        assert got.value == b"alpha"
        assert tier.tier is Tier.L1

    def test_get_miss(self) -> None:
        assert MemoryTier(4).get("missing") is None

    def test_remove(self) -> None:
        tier = MemoryTier(4)
        tier.put(_entry("a"))
        assert tier.remove("a") is True
        assert tier.remove("a") is False
        assert tier.get("a") is None

    def test_contains_and_peek_do_not_count(self) -> None:
        tier = MemoryTier(4)
        tier.put(_entry("a"))
        assert tier.contains("a")
        assert tier.peek("a") is not None
        stats = tier.stats()
        assert stats.hits == 0
        assert stats.misses == 0

    @pytest.mark.parametrize("capacity", [0, -1])
    def test_invalid_capacity(self, capacity: int) -> None:
        with pytest.raises(ConfigurationError):
            MemoryTier(capacity)

    def test_clear(self) -> None:
        tier = MemoryTier(4)
        tier.put(_entry("a"))
        tier.put(_entry("b"))
        assert tier.clear() == 2
        assert tier.size == 0
        assert tier.eviction_policy.keys() == []


class TestMemoryTierVersionGuard:
    def test_older_version_rejected(self) -> None:
        tier = MemoryTier(4)
        tier.put(_entry("a", version=5, value=b"new"))
        with pytest.raises(VersionConflictError) as exc_info:
            tier.put(_entry("a", version=3, value=b"old"))
        assert exc_info.value.stored_version == 5
        assert tier.get("a").value == b"new"
        assert tier.stats().version_conflicts == 1

    def test_equal_version_accepted(self) -> None:
        tier = MemoryTier(4)
        tier.put(_entry("a", version=5))
        tier.put(_entry("a", version=5))
        assert tier.get("a").version == 5

    def test_newer_version_replaces_in_place(self) -> None:
        tier = MemoryTier(2)
        tier.put(_entry("a", version=1))
        tier.put(_entry("b", version=1))
        tier.put(_entry("a", version=2, value=b"v2"))
        assert tier.size == 2
        assert tier.stats().evictions == 0
        assert tier.get("a").value == b"v2"


class TestMemoryTierEviction:
    def test_lru_evicts_least_recently_used(self) -> None:
        tier = MemoryTier(2, LRUPolicy())
        tier.put(_entry("a"))
        tier.put(_entry("b"))
        tier.get("a")
        tier.put(_entry("c"))
        assert tier.contains("a")
        assert not tier.contains("b")
        assert tier.contains("c")
        assert tier.stats().evictions == 1

    def test_fifo_ignores_access(self) -> None:
        tier = MemoryTier(2, FIFOPolicy())
        tier.put(_entry("a"))
        tier.put(_entry("b"))
        tier.get("a")
        tier.put(_entry("c"))
        assert not tier.contains("a")
        assert tier.contains("b")
        assert tier.contains("c")

    def test_update_counts_as_access_for_lru(self) -> None:
        tier = MemoryTier(2, LRUPolicy())
        tier.put(_entry("a", version=1))
        tier.put(_entry("b", version=1))
        tier.put(_entry("a", version=2))
        tier.put(_entry("c", version=1))
        assert tier.contains("a")
        assert not tier.contains("b")

    def test_capacity_one(self) -> None:
        tier = MemoryTier(1)
        tier.put(_entry("a"))
        tier.put(_entry("b"))
        assert tier.keys() == ["b"]

    def test_removed_key_is_not_a_victim(self) -> None:
        tier = MemoryTier(2)
        tier.put(_entry("a"))
        tier.put(_entry("b"))
        tier.remove("a")
        tier.put(_entry("c"))
        assert tier.keys() == ["b", "c"]
        assert tier.stats().evictions == 0

    def test_concurrent_inserts_respect_capacity(self) -> None:
        tier = MemoryTier(50)

        def writer(offset: int) -> None:
            for i in range(200):
                tier.put(_entry(f"k-{offset}-{i}"))

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        stats = tier.stats()
        assert stats.size == 50
        assert stats.evictions == 8 * 200 - 50
        assert len(tier.keys()) == 50
