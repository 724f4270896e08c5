"""
Tier contract and the shared adapter for remote tiers.

Every tier exposes the same capability set: ``get``, ``put``,
``remove`` and ``contains``.  ``contains`` is for diagnostics only;
cache-hit decisions must use ``get``.

:class:`RemoteTier` wraps a :class:`~tiercache.backends.base.KeyValueBackend`.
Backend calls run on a small thread pool so the caller waits at most
``timeout`` seconds; timeouts and backend failures are raised as
:class:`~tiercache.exceptions.TierUnavailableError`, never reported as a
miss.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from concurrent.futures import wait as wait_futures
from typing import Any, Callable, List, Optional

from pydantic import BaseModel

from tiercache.backends.base import KeyValueBackend
from tiercache.entry import CacheEntry, Tier, decode_entry, encode_entry
from tiercache.exceptions import BackendError, TierUnavailableError, VersionConflictError

logger = logging.getLogger(__name__)

_LOCK_STRIPES = 64


class TierStats(BaseModel):
    """Per-tier counters.

    Attributes:
        tier: Which tier these counters belong to.
        hits: Lookups that returned an entry.
        misses: Lookups that found nothing.
        unavailable: Calls that failed or timed out.
        version_conflicts: Writes rejected as stale.
        evictions: Entries removed to respect capacity (bounded tiers).
        size: Current entry count where the tier can know it.
        capacity: Maximum entry count for bounded tiers.
    """

    tier: Tier
    hits: int = 0
    misses: int = 0
    unavailable: int = 0
    version_conflicts: int = 0
    evictions: int = 0
    size: Optional[int] = None
    capacity: Optional[int] = None


class TierBackend(ABC):
    """Uniform capability set implemented by L1, L2 and L3."""

    tier: Tier

    @abstractmethod
    def get(self, key: str, timeout: Optional[float] = None) -> Optional[CacheEntry]:
        """Return the live entry for ``key`` or ``None`` if absent."""

    @abstractmethod
    def put(self, entry: CacheEntry, timeout: Optional[float] = None) -> CacheEntry:
        """Store ``entry`` unless a newer version is already held.

        Writing the version already stored is acknowledged without
        change, so repeating a promotion is harmless.

        Raises:
            VersionConflictError: If the stored entry has a higher version.
            TierUnavailableError: If the tier cannot be reached.
        """

    @abstractmethod
    def remove(self, key: str, timeout: Optional[float] = None) -> bool:
        """Delete ``key``.  Returns ``False`` if it was not present."""

    @abstractmethod
    def contains(self, key: str) -> bool:
        """Diagnostic presence check; not atomic with a following ``get``."""

    @abstractmethod
    def stats(self) -> TierStats:
        """Snapshot of this tier's counters."""

    def close(self) -> None:
        """Release resources held by the tier."""
        return None


class RemoteTier(TierBackend):
    """Adapter over a remote key-value backend with per-call timeouts.

    Writes are version-guarded: the stored document is read and compared
    under a per-key lock before being replaced.  The lock serializes
    writers inside this process only; the backend itself is opaque.

    A write that times out may still be running on the pool.  It stays
    attached to its lock stripe, and the next writer on that stripe
    waits for it (within its own timeout) before reading the stored
    version, so an abandoned older write never lands after a newer one.

    Args:
        backend: Store implementing the key-value contract.
        timeout_seconds: Default wait for each backend call.
        max_workers: Size of the thread pool running backend calls.
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        timeout_seconds: float = 1.0,
        max_workers: int = 8,
    ) -> None:
        self._backend = backend
        self._timeout = timeout_seconds
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix=f"tiercache-{self.tier.value}",
        )
        self._key_locks: List[threading.Lock] = [threading.Lock() for _ in range(_LOCK_STRIPES)]
        # Timed-out writes still running on the pool, guarded by the stripe lock
        self._in_flight: List[Optional[Future]] = [None] * _LOCK_STRIPES
        self._stats_lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._unavailable = 0
        self._version_conflicts = 0

    # ------------------------------------------------------------------
    # Hooks for concrete tiers
    # ------------------------------------------------------------------

    def _prepare(self, entry: CacheEntry) -> CacheEntry:
        """Return the entry as it should be stored in this tier."""
        return entry

    @property
    def _ttl_seconds(self) -> Optional[float]:
        return None

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    def get(self, key: str, timeout: Optional[float] = None) -> Optional[CacheEntry]:
        entry = self._fetch(key, timeout)
        with self._stats_lock:
            if entry is None:
                self._misses += 1
            else:
                self._hits += 1
        if entry is not None:
            logger.debug(
                "Tier hit",
                extra={"tier": self.tier.value, "cache_key": key, "version": entry.version},
            )
        return entry

    def put(self, entry: CacheEntry, timeout: Optional[float] = None) -> CacheEntry:
        deadline = self._deadline(timeout)
        stripe = self._stripe(entry.key)
        with self._key_locks[stripe]:
            self._await_in_flight(stripe, "put", deadline)
            current = self._fetch(entry.key, self._remaining(deadline))
            if current is not None:
                if current.version > entry.version:
                    with self._stats_lock:
                        self._version_conflicts += 1
                    raise VersionConflictError(entry.key, current.version, entry.version)
                if current.version == entry.version:
                    return current
            stored = self._prepare(entry)
            remaining = self._remaining(deadline)
            self._call(
                "put",
                self._backend.put,
                entry.key,
                encode_entry(stored),
                self._ttl_seconds,
                remaining,
                timeout=remaining,
                stripe=stripe,
            )
        logger.debug(
            "Tier set",
            extra={"tier": self.tier.value, "cache_key": entry.key, "version": entry.version},
        )
        return stored

    def remove(self, key: str, timeout: Optional[float] = None) -> bool:
        deadline = self._deadline(timeout)
        stripe = self._stripe(key)
        with self._key_locks[stripe]:
            self._await_in_flight(stripe, "delete", deadline)
            remaining = self._remaining(deadline)
            return bool(
                self._call("delete", self._backend.delete, key, remaining, timeout=remaining, stripe=stripe)
            )

    def contains(self, key: str) -> bool:
        return self._fetch(key, None) is not None

    def stats(self) -> TierStats:
        with self._stats_lock:
            return TierStats(
                tier=self.tier,
                hits=self._hits,
                misses=self._misses,
                unavailable=self._unavailable,
                version_conflicts=self._version_conflicts,
            )

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
        self._backend.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _stripe(self, key: str) -> int:
        return hash(key) % _LOCK_STRIPES

    def _deadline(self, timeout: Optional[float]) -> float:
        return time.monotonic() + (self._timeout if timeout is None else timeout)

    @staticmethod
    def _remaining(deadline: float) -> float:
        return max(0.0, deadline - time.monotonic())

    def _await_in_flight(self, stripe: int, op: str, deadline: float) -> None:
        """Wait for a timed-out write on ``stripe`` to finish.  Caller holds the stripe lock."""
        pending = self._in_flight[stripe]
        if pending is None:
            return
        if not pending.done():
            wait_futures([pending], timeout=self._remaining(deadline))
            if not pending.done():
                self._mark_unavailable(op, "earlier write still in flight")
                raise TierUnavailableError(self.tier.value, f"{op} blocked by an earlier write still in flight")
        self._in_flight[stripe] = None

    def _fetch(self, key: str, timeout: Optional[float]) -> Optional[CacheEntry]:
        """Read and decode ``key`` without touching hit/miss counters."""
        data = self._call("get", self._backend.get, key, timeout, timeout=timeout)
        if data is None:
            return None
        try:
            entry = decode_entry(data)
        except ValueError as exc:
            logger.warning(
                "Undecodable tier document treated as absent",
                extra={"tier": self.tier.value, "cache_key": key, "error": str(exc)},
            )
            return None
        if entry.is_expired():
            return None
        return entry

    def _call(
        self,
        op: str,
        fn: Callable[..., Any],
        *args: Any,
        timeout: Optional[float] = None,
        stripe: Optional[int] = None,
    ) -> Any:
        """Run a backend call on the pool and wait at most ``timeout`` seconds.

        Writes pass their ``stripe``; if they time out after the call has
        started, the future is parked there for the next writer to await.
        """
        wait = self._timeout if timeout is None else timeout
        try:
            future = self._executor.submit(fn, *args)
        except RuntimeError as exc:
            # Pool already shut down
            self._mark_unavailable(op, str(exc))
            raise TierUnavailableError(self.tier.value, f"{op} rejected: {exc}") from exc
        try:
            return future.result(timeout=wait)
        except FuturesTimeoutError as exc:
            if not future.cancel() and stripe is not None:
                self._in_flight[stripe] = future
            self._mark_unavailable(op, f"timed out after {wait:.3g}s")
            raise TierUnavailableError(self.tier.value, f"{op} timed out after {wait:.3g}s") from exc
        except (BackendError, OSError) as exc:
            self._mark_unavailable(op, str(exc))
            raise TierUnavailableError(self.tier.value, f"{op} failed: {exc}") from exc

    def _mark_unavailable(self, op: str, reason: str) -> None:
        with self._stats_lock:
            self._unavailable += 1
        logger.warning(
            "Tier unavailable",
            extra={"tier": self.tier.value, "op": op, "reason": reason},
        )
