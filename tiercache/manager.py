"""
Cache manager: one lookup/store API over the L1 -> L2 -> L3 chain.

Read path:
    L1 hit returns immediately.  Otherwise L2, then L3, are consulted;
    a hit at a lower tier is promoted into every faster tier above it,
    slowest first (L3 -> L2 before L2 -> L1).  A tier that is
    unavailable counts as a miss for that tier and the chain continues.

Write path:
    The active :class:`~tiercache.write_policy.WritePolicy` returns a
    propagation plan that is carried out exactly once per ``put``.

Every tier write, promotion included, is version-guarded, so repeating
a promotion after a partial failure is always safe.  No lock spans
tiers.
"""

import logging
import time
from typing import Dict, Iterable, Optional, Union

from tiercache.backends.base import KeyValueBackend
from tiercache.backends.redis_backend import RedisBackend
from tiercache.backends.sql_backend import SqlBackend
from tiercache.config import Settings, get_settings
from tiercache.entry import CacheEntry, GetResult, Tier, VersionClock
from tiercache.eviction import EvictionPolicyType, create_eviction_policy
from tiercache.exceptions import (
    DurabilityFailureError,
    PartialRemovalError,
    TierCacheException,
    TierUnavailableError,
    VersionConflictError,
    WriteBackError,
    WritePropagationError,
)
from tiercache.observability.metrics import CacheMetrics, MetricsCollector
from tiercache.tiers.base import TierBackend, TierStats
from tiercache.tiers.distributed import DEFAULT_TTL_SECONDS, DistributedTier
from tiercache.tiers.durable import DurableTier
from tiercache.tiers.memory import MemoryTier
from tiercache.write_policy import (
    PropagationPlan,
    WritePolicy,
    WritePolicyType,
    WriteThroughPolicy,
    create_write_policy,
)
from tiercache.writeback.queue import WriteBackQueue, WriteBackTask
from tiercache.writeback.worker import FailureHandler, WriteBackConfig, WriteBackWorker

logger = logging.getLogger(__name__)

# Backoff between synchronous retries of a failing tier: 50ms, 100ms, 200ms...
_SYNC_RETRY_BASE_DELAY = 0.05
_SYNC_RETRY_MAX_DELAY = 1.0

_FASTER_TIERS = {
    Tier.L1: (),
    Tier.L2: (Tier.L1,),
    Tier.L3: (Tier.L2, Tier.L1),
}


class CacheManager:
    """Explicitly owned facade over the three tiers.

    Args:
        l1: Process-local tier.
        l2: Distributed tier.
        l3: Durable tier.
        write_policy: Propagation strategy; write-through by default.
        write_back_config: Retry/threading settings for deferred writes.
        metrics: Observability sink; a private collector by default.
        default_timeout: Per-tier wait applied when a call passes none.
            ``None`` defers to each tier's own default.
        on_durability_failure: Extra sink called for every deferred write
            that exhausted its retries.
    """

    def __init__(
        self,
        l1: MemoryTier,
        l2: TierBackend,
        l3: TierBackend,
        write_policy: Optional[WritePolicy] = None,
        *,
        write_back_config: Optional[WriteBackConfig] = None,
        metrics: Optional[MetricsCollector] = None,
        default_timeout: Optional[float] = None,
        on_durability_failure: Optional[FailureHandler] = None,
    ) -> None:
        self._l1 = l1
        self._l2 = l2
        self._l3 = l3
        self._tiers: Dict[Tier, TierBackend] = {Tier.L1: l1, Tier.L2: l2, Tier.L3: l3}
        self._write_policy = write_policy or WriteThroughPolicy()
        self._metrics = metrics or MetricsCollector()
        self._default_timeout = default_timeout
        self._clock = VersionClock()
        self._failure_sink = on_durability_failure
        self._closed = False

        self._queue = WriteBackQueue()
        self._metrics.bind_queue_depth(self._queue.size)
        self._worker = WriteBackWorker(
            self._queue,
            self._deliver,
            write_back_config,
            on_failure=self._handle_durability_failure,
            on_delivered=self._handle_delivered,
        )

        logger.info(
            "CacheManager initialised",
            extra={
                "write_policy": self._write_policy.policy_type.value,
                "l1_capacity": l1.capacity,
                "eviction_policy": l1.eviction_policy.policy_type.value,
            },
        )

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def configure(
        cls,
        l2_backend: KeyValueBackend,
        l3_backend: KeyValueBackend,
        *,
        eviction_policy: Union[EvictionPolicyType, str] = EvictionPolicyType.LRU,
        write_policy: Union[WritePolicy, WritePolicyType, str] = WritePolicyType.WRITE_THROUGH,
        l1_capacity: int = 10000,
        l2_ttl_seconds: float = DEFAULT_TTL_SECONDS,
        l2_timeout_seconds: float = 0.5,
        l3_timeout_seconds: float = 2.0,
        remote_max_workers: int = 8,
        write_through_retries: int = 2,
        include_l2_on_write_back: bool = True,
        write_back_config: Optional[WriteBackConfig] = None,
        default_timeout: Optional[float] = None,
        metrics: Optional[MetricsCollector] = None,
        on_durability_failure: Optional[FailureHandler] = None,
    ) -> "CacheManager":
        """Build a manager and its tiers from backends and policy choices.

        Raises:
            ConfigurationError: If a policy name or size is invalid.
        """
        if not isinstance(write_policy, WritePolicy):
            write_policy = create_write_policy(
                write_policy,
                max_retries=write_through_retries,
                include_l2=include_l2_on_write_back,
            )
        l1 = MemoryTier(l1_capacity, create_eviction_policy(eviction_policy))
        l2 = DistributedTier(
            l2_backend,
            ttl_seconds=l2_ttl_seconds,
            timeout_seconds=l2_timeout_seconds,
            max_workers=remote_max_workers,
        )
        l3 = DurableTier(l3_backend, timeout_seconds=l3_timeout_seconds, max_workers=remote_max_workers)
        return cls(
            l1,
            l2,
            l3,
            write_policy,
            write_back_config=write_back_config,
            metrics=metrics,
            default_timeout=default_timeout,
            on_durability_failure=on_durability_failure,
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "CacheManager":
        """Build a manager over Redis (L2) and SQL (L3) from configuration."""
        settings = settings or get_settings()
        l2_backend = RedisBackend(
            settings.l2.redis_url,
            key_prefix=settings.l2.key_prefix,
            socket_timeout=settings.l2.timeout_seconds,
        )
        l3_backend = SqlBackend.from_url(settings.l3.database_url, pool_size=settings.l3.pool_size)
        wb = settings.write_back
        return cls.configure(
            l2_backend,
            l3_backend,
            eviction_policy=settings.l1.eviction_policy,
            write_policy=settings.manager.write_policy,
            l1_capacity=settings.l1.capacity,
            l2_ttl_seconds=settings.l2.ttl_seconds,
            l2_timeout_seconds=settings.l2.timeout_seconds,
            l3_timeout_seconds=settings.l3.timeout_seconds,
            remote_max_workers=max(settings.l2.max_workers, settings.l3.max_workers),
            write_through_retries=settings.manager.write_through_retries,
            include_l2_on_write_back=wb.include_l2,
            write_back_config=WriteBackConfig(
                max_attempts=wb.max_attempts,
                base_delay_seconds=wb.base_delay_seconds,
                max_delay_seconds=wb.max_delay_seconds,
                workers=wb.workers,
                poll_interval_ms=wb.poll_interval_ms,
            ),
            default_timeout=settings.manager.default_timeout_seconds,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> "CacheManager":
        """Start the write-back worker (required before deferred writes)."""
        if self._closed:
            raise WriteBackError("CacheManager is closed")
        if not self._worker.is_running:
            self._worker.start()
        return self

    def close(self, timeout: float = 5.0) -> None:
        """Drain pending deferred writes, stop the worker and release tiers.

        Deferred writes that cannot be delivered within ``timeout`` are
        reported as durability failures.
        """
        if self._closed:
            return
        self._worker.stop(timeout=timeout, drain=True)
        for tier in self._tiers.values():
            tier.close()
        self._closed = True
        logger.info("CacheManager closed")

    def __enter__(self) -> "CacheManager":
        return self.start()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def get(self, key: str, timeout: Optional[float] = None) -> GetResult:
        """Look ``key`` up through L1 -> L2 -> L3 with promotion on hit.

        Args:
            key: Cache key.
            timeout: Maximum wait per remote tier, in seconds.

        Returns:
            GetResult naming the tier that answered; ``found=False`` and
            ``hit_tier=Tier.NONE`` on a full miss.
        """
        timeout = self._resolve_timeout(timeout)

        entry = self._l1.get(key)
        if entry is not None:
            self._metrics.record_hit(Tier.L1)
            return self._result(entry, Tier.L1)
        self._metrics.record_miss(Tier.L1)

        entry = self._read(Tier.L2, key, timeout)
        if entry is not None:
            self._promote(entry, (Tier.L1,), timeout)
            return self._result(entry, Tier.L2)

        entry = self._read(Tier.L3, key, timeout)
        if entry is not None:
            self._promote(entry, (Tier.L2, Tier.L1), timeout)
            return self._result(entry, Tier.L3)

        self._metrics.record_miss(Tier.NONE)
        logger.debug("Cache miss", extra={"cache_key": key})
        return GetResult()

    def _read(self, tier: Tier, key: str, timeout: Optional[float]) -> Optional[CacheEntry]:
        try:
            entry = self._tiers[tier].get(key, timeout)
        except TierUnavailableError as exc:
            self._metrics.record_unavailable(tier)
            logger.warning(
                "Tier skipped on read",
                extra={"tier": tier.value, "cache_key": key, "reason": exc.reason},
            )
            return None
        if entry is None:
            self._metrics.record_miss(tier)
        else:
            self._metrics.record_hit(tier)
        return entry

    def _promote(self, entry: CacheEntry, targets: Iterable[Tier], timeout: Optional[float]) -> None:
        """Copy ``entry`` into ``targets`` (slowest first).

        Stops at the first tier holding a newer version so a faster
        tier never ends up older than the one below it.
        """
        promoted = CacheEntry(key=entry.key, value=entry.value, version=entry.version)
        for tier in targets:
            try:
                self._tiers[tier].put(promoted, timeout)
            except VersionConflictError as exc:
                self._metrics.record_version_conflict()
                logger.debug(
                    "Promotion skipped; tier holds newer version",
                    extra={
                        "tier": tier.value,
                        "cache_key": entry.key,
                        "stored_version": exc.stored_version,
                        "promoted_version": entry.version,
                    },
                )
                return
            except TierUnavailableError as exc:
                self._metrics.record_unavailable(tier)
                logger.warning(
                    "Promotion skipped; tier unavailable",
                    extra={"tier": tier.value, "cache_key": entry.key, "reason": exc.reason},
                )
                continue
            self._metrics.record_promotion()
            logger.debug(
                "Entry promoted",
                extra={"tier": tier.value, "cache_key": entry.key, "version": entry.version},
            )

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def put(
        self,
        key: str,
        value: bytes,
        version: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> Optional[CacheEntry]:
        """Store ``value`` under ``key`` according to the write policy.

        Args:
            key: Cache key (must not be empty).
            value: Payload.
            version: Explicit version; a fresh monotonic one by default.
            timeout: Maximum wait per remote tier, in seconds.

        Returns:
            The written entry, or ``None`` if a tier held a newer version
            and no tier kept this one (the stale write is discarded and
            not counted as a write).

        Raises:
            ValueError: If the key is empty.
            DurabilityFailureError: Write-through/write-around could not
                reach L3.
            WritePropagationError: Write-through reached L3 but not every
                faster tier.
            WriteBackError: A deferred write was attempted before
                :meth:`start`.
        """
        entry = CacheEntry(
            key=key,
            value=value,
            version=version if version is not None else self._clock.next(),
        )
        plan = self._write_policy.apply(key, entry.value)
        if plan.defer_durable and not self._worker.is_running:
            raise WriteBackError("Write-back worker not running; call start() first")

        timeout = self._resolve_timeout(timeout)
        try:
            applied = self._execute(plan, entry, timeout)
        except TierCacheException:
            self._metrics.record_write(False)
            raise
        if not applied:
            return None
        self._metrics.record_write(True)
        return entry

    def _execute(self, plan: PropagationPlan, entry: CacheEntry, timeout: Optional[float]) -> bool:
        """Carry out ``plan`` for ``entry``.

        Returns ``False`` if the write was discarded as stale and survives
        in no tier.
        """
        written = []
        for position, tier in enumerate(plan.write_tiers):
            try:
                self._write_with_retry(tier, entry, plan.max_retries, timeout)
            except VersionConflictError as exc:
                self._metrics.record_version_conflict()
                logger.info(
                    "Stale write discarded",
                    extra={
                        "tier": tier.value,
                        "cache_key": entry.key,
                        "stored_version": exc.stored_version,
                        "attempted_version": entry.version,
                    },
                )
                if not written:
                    return False
                # A slower tier holds a newer version; faster copies must not outlive it
                for faster in _FASTER_TIERS[tier]:
                    self._invalidate(faster, entry.key, timeout)
                return any(t not in _FASTER_TIERS[tier] for t in written)
            except TierUnavailableError as exc:
                if not plan.require_all:
                    logger.warning(
                        "Best-effort tier write skipped",
                        extra={"tier": tier.value, "cache_key": entry.key, "reason": exc.reason},
                    )
                    continue
                self._fail_write(tier, plan.write_tiers[position + 1:], entry, plan, exc)
            written.append(tier)

        for tier in plan.invalidate_tiers:
            self._invalidate(tier, entry.key, timeout)

        if plan.defer_durable:
            self._queue.enqueue(WriteBackTask(key=entry.key, value=entry.value, version=entry.version))

        logger.debug(
            "Cache set",
            extra={
                "cache_key": entry.key,
                "version": entry.version,
                "tiers": [t.value for t in written],
                "deferred": plan.defer_durable,
            },
        )
        return True

    def _write_with_retry(
        self,
        tier: Tier,
        entry: CacheEntry,
        max_retries: int,
        timeout: Optional[float],
    ) -> CacheEntry:
        attempt = 0
        while True:
            try:
                return self._tiers[tier].put(entry, timeout)
            except TierUnavailableError:
                self._metrics.record_unavailable(tier)
                if attempt >= max_retries:
                    raise
                attempt += 1
                time.sleep(min(_SYNC_RETRY_BASE_DELAY * 2 ** (attempt - 1), _SYNC_RETRY_MAX_DELAY))

    def _fail_write(
        self,
        failed: Tier,
        remaining: Iterable[Tier],
        entry: CacheEntry,
        plan: PropagationPlan,
        exc: TierUnavailableError,
    ) -> None:
        """Undo what a failed synchronous write would leave inconsistent, then raise."""
        # Faster tiers not yet written may hold an older value than L3 now does
        for tier in remaining:
            self._invalidate(tier, entry.key, None)
        attempts = plan.max_retries + 1
        logger.error(
            "Synchronous write failed",
            extra={
                "tier": failed.value,
                "cache_key": entry.key,
                "version": entry.version,
                "attempts": attempts,
                "reason": exc.reason,
            },
        )
        if failed is Tier.L3:
            raise DurabilityFailureError(entry.key, entry.version, attempts, exc.reason) from exc
        raise WritePropagationError(entry.key, [failed], exc.reason) from exc

    def _invalidate(self, tier: Tier, key: str, timeout: Optional[float]) -> None:
        try:
            self._tiers[tier].remove(key, timeout)
        except TierUnavailableError as exc:
            self._metrics.record_unavailable(tier)
            logger.warning(
                "Invalidation failed; stale copy may persist until expiry",
                extra={"tier": tier.value, "cache_key": key, "reason": exc.reason},
            )

    # ------------------------------------------------------------------
    # Remove
    # ------------------------------------------------------------------

    def remove(self, key: str, timeout: Optional[float] = None) -> bool:
        """Delete ``key`` from every tier (L3, then L2, then L1).

        Queued deferred writes for the key are discarded first so they
        cannot resurrect it in L3.

        Returns:
            ``True`` if any tier held the key.

        Raises:
            PartialRemovalError: One or more tiers could not be reached;
                every other tier was still cleared.
        """
        timeout = self._resolve_timeout(timeout)
        self._queue.discard(key)

        removed = False
        failed = set()
        for tier in (Tier.L3, Tier.L2, Tier.L1):
            try:
                removed = self._tiers[tier].remove(key, timeout) or removed
            except TierUnavailableError as exc:
                self._metrics.record_unavailable(tier)
                failed.add(tier)
                logger.warning(
                    "Removal failed on tier",
                    extra={"tier": tier.value, "cache_key": key, "reason": exc.reason},
                )

        if failed:
            raise PartialRemovalError(key, failed)
        self._metrics.clear_undurable(key)
        self._metrics.record_removal()
        logger.info("Cache entry removed", extra={"cache_key": key, "existed": removed})
        return removed

    # ------------------------------------------------------------------
    # Write-back plumbing
    # ------------------------------------------------------------------

    def _deliver(self, task: WriteBackTask) -> None:
        self._l3.put(CacheEntry(key=task.key, value=task.value, version=task.version))

    def _handle_delivered(self, task: WriteBackTask) -> None:
        self._metrics.mark_durable(task.key, task.version)

    def _handle_durability_failure(self, task: WriteBackTask, error: DurabilityFailureError) -> None:
        self._metrics.record_durability_failure(task, error)
        if self._failure_sink is not None:
            self._failure_sink(task, error)

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait until every deferred write has been delivered or reported.

        Returns:
            ``True`` if the queue emptied within ``timeout``.
        """
        return self._queue.wait_empty(timeout)

    def undurable_keys(self) -> Dict[str, int]:
        """Keys whose deferred write failed, mapped to the failed version."""
        return self._metrics.undurable_keys()

    def reconcile(self, keys: Optional[Iterable[str]] = None, timeout: Optional[float] = None) -> int:
        """Resubmit not-yet-durable keys to L3 from their cached copies.

        Args:
            keys: Keys to reconcile; every flagged key by default.
            timeout: Maximum wait per tier call.

        Returns:
            Number of keys now durable.
        """
        flagged = self._metrics.undurable_keys()
        targets = list(keys) if keys is not None else list(flagged)
        reconciled = 0
        for key in targets:
            copy = self._l1.peek(key)
            if copy is None:
                try:
                    copy = self._l2.get(key, timeout)
                except TierUnavailableError:
                    copy = None
            if copy is None:
                logger.warning("No cached copy to reconcile", extra={"cache_key": key})
                continue
            try:
                self._l3.put(CacheEntry(key=key, value=copy.value, version=copy.version), timeout)
            except VersionConflictError:
                pass
            except TierUnavailableError as exc:
                logger.warning(
                    "Reconciliation deferred; L3 unavailable",
                    extra={"cache_key": key, "reason": exc.reason},
                )
                continue
            self._metrics.mark_durable(key, copy.version)
            reconciled += 1
        logger.info("Reconciliation finished", extra={"reconciled": reconciled, "requested": len(targets)})
        return reconciled

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def locate(self, key: str) -> Dict[Tier, Optional[bool]]:
        """Which tiers currently hold ``key`` (``None`` if unreachable).

        Diagnostics only: the answer may be stale by the time it returns.
        """
        found: Dict[Tier, Optional[bool]] = {}
        for tier, backend in self._tiers.items():
            try:
                found[tier] = backend.contains(key)
            except TierUnavailableError:
                found[tier] = None
        return found

    def stats(self) -> CacheMetrics:
        """Hierarchy-wide counters and write-back queue depth."""
        return self._metrics.snapshot()

    def tier_stats(self) -> Dict[Tier, TierStats]:
        """Counters reported by each tier itself."""
        return {tier: backend.stats() for tier, backend in self._tiers.items()}

    @property
    def l1(self) -> MemoryTier:
        return self._l1

    @property
    def l2(self) -> TierBackend:
        return self._l2

    @property
    def l3(self) -> TierBackend:
        return self._l3

    @property
    def write_policy(self) -> WritePolicy:
        return self._write_policy

    @property
    def write_back_worker(self) -> WriteBackWorker:
        return self._worker

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _resolve_timeout(self, timeout: Optional[float]) -> Optional[float]:
        return self._default_timeout if timeout is None else timeout

    @staticmethod
    def _result(entry: CacheEntry, tier: Tier) -> GetResult:
        logger.debug(
            "Cache hit",
            extra={"cache_key": entry.key, "tier": tier.value, "version": entry.version},
        )
        return GetResult(found=True, value=entry.value, version=entry.version, hit_tier=tier)
