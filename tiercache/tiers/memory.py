"""
Process-local tier (L1).

Bounded in-memory store with policy-driven eviction.  No TTL and no
I/O: every operation completes under a single lock, so concurrent
callers always observe a consistent size and eviction order.
"""

import logging
import threading
from typing import Dict, List, Optional

from tiercache.entry import CacheEntry, Tier
from tiercache.eviction import EvictionPolicy, LRUPolicy
from tiercache.exceptions import ConfigurationError, VersionConflictError
from tiercache.tiers.base import TierBackend, TierStats

logger = logging.getLogger(__name__)


class MemoryTier(TierBackend):
    """In-process L1 tier.

    Inserting a new key at capacity evicts exactly one victim chosen by
    the eviction policy before the insert.  Updating an existing key
    replaces it in place and counts as an access.

    Args:
        capacity: Maximum number of entries (must be >= 1).
        eviction_policy: Policy instance owned by this tier; defaults to
            LRU.  Fixed for the lifetime of the tier.
    """

    tier = Tier.L1

    def __init__(self, capacity: int, eviction_policy: Optional[EvictionPolicy] = None) -> None:
        if capacity < 1:
            raise ConfigurationError(f"L1 capacity must be >= 1, got {capacity}")
        self._capacity = capacity
        self._policy = eviction_policy or LRUPolicy()
        self._store: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._version_conflicts = 0
        logger.info(
            "MemoryTier initialised",
            extra={"capacity": capacity, "eviction_policy": self._policy.policy_type.value},
        )

    def get(self, key: str, timeout: Optional[float] = None) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                self._misses += 1
                return None
            self._policy.on_access(key)
            self._hits += 1
            return entry

    def put(self, entry: CacheEntry, timeout: Optional[float] = None) -> CacheEntry:
        key = entry.key
        with self._lock:
            current = self._store.get(key)
            if current is not None:
                if current.version > entry.version:
                    self._version_conflicts += 1
                    raise VersionConflictError(key, current.version, entry.version)
                self._store[key] = entry
                self._policy.on_access(key)
                return entry

            while len(self._store) >= self._capacity:
                victim = self._policy.select_victim()
                self._store.pop(victim, None)
                self._policy.on_remove(victim)
                self._evictions += 1
                logger.debug("L1 eviction", extra={"victim": victim, "incoming": key})

            self._store[key] = entry
            self._policy.on_insert(key)
        return entry

    def remove(self, key: str, timeout: Optional[float] = None) -> bool:
        with self._lock:
            if self._store.pop(key, None) is None:
                return False
            self._policy.on_remove(key)
            return True

    def contains(self, key: str) -> bool:
        with self._lock:
            return key in self._store

    def peek(self, key: str) -> Optional[CacheEntry]:
        """Return the entry without counting a hit or touching recency."""
        with self._lock:
            return self._store.get(key)

    def keys(self) -> List[str]:
        """Snapshot of resident keys in eviction order (next victim first)."""
        with self._lock:
            return self._policy.keys()

    def clear(self) -> int:
        """Remove all entries.  Returns number of entries removed."""
        with self._lock:
            count = len(self._store)
            for key in list(self._store):
                self._policy.on_remove(key)
            self._store.clear()
        logger.info("L1 cleared", extra={"entries_removed": count})
        return count

    def stats(self) -> TierStats:
        with self._lock:
            return TierStats(
                tier=self.tier,
                hits=self._hits,
                misses=self._misses,
                version_conflicts=self._version_conflicts,
                evictions=self._evictions,
                size=len(self._store),
                capacity=self._capacity,
            )

    @property
    def size(self) -> int:
        """Current number of entries in the tier."""
        with self._lock:
            return len(self._store)

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def eviction_policy(self) -> EvictionPolicy:
        return self._policy
