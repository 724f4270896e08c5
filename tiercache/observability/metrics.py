"""
MetricsCollector -- observability sink for the cache hierarchy.

Counts per-tier hits, misses and unavailability as seen by the manager,
promotions, stale-write rejections and write outcomes, tracks write-back
queue depth, and records durability failures for operational tooling.
How these numbers are exported is left to the embedding application.
"""

import logging
import threading
from collections import defaultdict, deque
from datetime import datetime, timezone
from typing import Callable, Deque, Dict, List, Optional

from pydantic import BaseModel, Field

from tiercache.entry import Tier
from tiercache.exceptions import DurabilityFailureError
from tiercache.writeback.queue import WriteBackTask

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class MetricsConfig(BaseModel):
    """Configuration for the MetricsCollector.

    Attributes:
        enabled: Whether metrics collection is active.
        max_failure_records: How many durability failures to retain.
    """

    enabled: bool = True
    max_failure_records: int = Field(default=1000, ge=1)


# ---------------------------------------------------------------------------
# Snapshot models
# ---------------------------------------------------------------------------


class DurabilityFailureRecord(BaseModel):
    """A write that never reached the durable tier."""

    key: str
    version: int
    attempts: int
    reason: str = ""
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class TierCounters(BaseModel):
    hits: int = 0
    misses: int = 0
    unavailable: int = 0


class CacheMetrics(BaseModel):
    """Point-in-time view of the hierarchy's counters.

    Attributes:
        tiers: Hit/miss/unavailable counts per tier, as seen by the manager.
        full_misses: Lookups no tier could answer.
        promotions: Entries copied into a faster tier after a lower hit.
        version_conflicts: Stale writes discarded as no-ops.
        writes: Successful ``put`` calls.
        write_failures: ``put`` calls that raised.
        removals: Successful ``remove`` calls.
        write_back_queue_depth: Tasks waiting for durable delivery.
        durability_failures: Total deferred writes that exhausted retries.
        undurable_keys: Keys currently flagged as not yet durable.
    """

    tiers: Dict[str, TierCounters] = Field(default_factory=dict)
    full_misses: int = 0
    promotions: int = 0
    version_conflicts: int = 0
    writes: int = 0
    write_failures: int = 0
    removals: int = 0
    write_back_queue_depth: int = 0
    durability_failures: int = 0
    undurable_keys: int = 0

    @property
    def hit_rate(self) -> float:
        """Fraction of lookups answered by any tier."""
        hits = sum(c.hits for c in self.tiers.values())
        total = hits + self.full_misses
        return hits / total if total > 0 else 0.0


# ---------------------------------------------------------------------------
# MetricsCollector
# ---------------------------------------------------------------------------


class MetricsCollector:
    """Thread-safe counters for the cache hierarchy.

    Thread-safe: all mutations acquire ``_lock``.

    Args:
        config: Optional configuration; defaults are applied if omitted.
    """

    def __init__(self, config: Optional[MetricsConfig] = None) -> None:
        self._config = config or MetricsConfig()
        self._lock = threading.Lock()

        self._hits: Dict[Tier, int] = defaultdict(int)
        self._misses: Dict[Tier, int] = defaultdict(int)
        self._unavailable: Dict[Tier, int] = defaultdict(int)
        self._full_misses = 0
        self._promotions = 0
        self._version_conflicts = 0
        self._writes = 0
        self._write_failures = 0
        self._removals = 0
        self._durability_failure_count = 0
        self._failures: Deque[DurabilityFailureRecord] = deque(maxlen=self._config.max_failure_records)
        self._undurable: Dict[str, int] = {}
        self._queue_depth: Callable[[], int] = lambda: 0

        logger.info(
            "MetricsCollector initialised",
            extra={"enabled": self._config.enabled},
        )

    # ------------------------------------------------------------------
    # Recording methods
    # ------------------------------------------------------------------

    def record_hit(self, tier: Tier) -> None:
        if not self._config.enabled:
            return
        with self._lock:
            self._hits[tier] += 1

    def record_miss(self, tier: Tier) -> None:
        if not self._config.enabled:
            return
        with self._lock:
            if tier is Tier.NONE:
                self._full_misses += 1
            else:
                self._misses[tier] += 1

    def record_unavailable(self, tier: Tier) -> None:
        if not self._config.enabled:
            return
        with self._lock:
            self._unavailable[tier] += 1

    def record_promotion(self) -> None:
        if not self._config.enabled:
            return
        with self._lock:
            self._promotions += 1

    def record_version_conflict(self) -> None:
        if not self._config.enabled:
            return
        with self._lock:
            self._version_conflicts += 1

    def record_write(self, success: bool) -> None:
        if not self._config.enabled:
            return
        with self._lock:
            if success:
                self._writes += 1
            else:
                self._write_failures += 1

    def record_removal(self) -> None:
        if not self._config.enabled:
            return
        with self._lock:
            self._removals += 1

    def record_durability_failure(self, task: WriteBackTask, error: DurabilityFailureError) -> None:
        """Durability sink: flag the key and keep a record of the failure.

        Always recorded, even when the collector is disabled, since the
        flag drives reconciliation.
        """
        record = DurabilityFailureRecord(
            key=task.key,
            version=task.version,
            attempts=task.attempts,
            reason=error.reason,
        )
        with self._lock:
            self._durability_failure_count += 1
            self._failures.append(record)
            if self._undurable.get(task.key, -1) < task.version:
                self._undurable[task.key] = task.version
        logger.error(
            "Write not durable; key flagged for reconciliation",
            extra={"cache_key": task.key, "version": task.version, "attempts": task.attempts},
        )

    def mark_durable(self, key: str, version: int) -> None:
        """Clear the not-yet-durable flag once ``version`` (or newer) reached L3."""
        with self._lock:
            flagged = self._undurable.get(key)
            if flagged is not None and flagged <= version:
                del self._undurable[key]

    def clear_undurable(self, key: str) -> None:
        with self._lock:
            self._undurable.pop(key, None)

    def bind_queue_depth(self, probe: Callable[[], int]) -> None:
        """Register a callable reporting the current write-back queue depth."""
        self._queue_depth = probe

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def undurable_keys(self) -> Dict[str, int]:
        """Keys flagged as not yet durable, mapped to the failed version."""
        with self._lock:
            return dict(self._undurable)

    def durability_failures(self) -> List[DurabilityFailureRecord]:
        """Most recent durability failures, oldest first."""
        with self._lock:
            return list(self._failures)

    def snapshot(self) -> CacheMetrics:
        """Return the current counters."""
        depth = self._queue_depth()
        with self._lock:
            tiers = {
                tier.value: TierCounters(
                    hits=self._hits[tier],
                    misses=self._misses[tier],
                    unavailable=self._unavailable[tier],
                )
                for tier in (Tier.L1, Tier.L2, Tier.L3)
            }
            return CacheMetrics(
                tiers=tiers,
                full_misses=self._full_misses,
                promotions=self._promotions,
                version_conflicts=self._version_conflicts,
                writes=self._writes,
                write_failures=self._write_failures,
                removals=self._removals,
                write_back_queue_depth=depth,
                durability_failures=self._durability_failure_count,
                undurable_keys=len(self._undurable),
            )

    def reset(self) -> None:
        """Zero every counter (flags for undurable keys are kept)."""
        with self._lock:
            self._hits.clear()
            self._misses.clear()
            self._unavailable.clear()
            self._full_misses = 0
            self._promotions = 0
            self._version_conflicts = 0
            self._writes = 0
            self._write_failures = 0
            self._removals = 0
