"""
Distributed tier (L2) adapter.

Every write carries a TTL (default 300 seconds).  The TTL is handed to
the backend and also stamped on the stored document as ``expires_at``
so an entry the backend has not yet expired is still treated as absent
once stale.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from tiercache.backends.base import KeyValueBackend
from tiercache.entry import CacheEntry, Tier
from tiercache.exceptions import ConfigurationError
from tiercache.tiers.base import RemoteTier

DEFAULT_TTL_SECONDS = 300.0


class DistributedTier(RemoteTier):
    """L2 tier over a shared backend such as Redis.

    Args:
        backend: Shared key-value store.
        ttl_seconds: Lifetime attached to every write.
        timeout_seconds: Default wait for each backend call.
        max_workers: Size of the thread pool running backend calls.
    """

    tier = Tier.L2

    def __init__(
        self,
        backend: KeyValueBackend,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        timeout_seconds: float = 0.5,
        max_workers: int = 8,
    ) -> None:
        if ttl_seconds <= 0:
            raise ConfigurationError(f"L2 TTL must be positive, got {ttl_seconds}")
        self._ttl = float(ttl_seconds)
        super().__init__(backend, timeout_seconds=timeout_seconds, max_workers=max_workers)

    @property
    def _ttl_seconds(self) -> Optional[float]:
        return self._ttl

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def _prepare(self, entry: CacheEntry) -> CacheEntry:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=self._ttl)
        return entry.model_copy(update={"expires_at": expires_at})
