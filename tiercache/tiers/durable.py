"""
Durable tier (L3) adapter.

The source of truth once written.  No TTL: entries persist until
removed or replaced by a higher version.  Concurrent writes to one key
serialize on the adapter's per-key lock, so the stored document always
reflects the highest version written.
"""

from tiercache.backends.base import KeyValueBackend
from tiercache.entry import CacheEntry, Tier
from tiercache.tiers.base import RemoteTier


class DurableTier(RemoteTier):
    """L3 tier over a durable backend such as a SQL database.

    Args:
        backend: Durable key-value store.
        timeout_seconds: Default wait for each backend call.
        max_workers: Size of the thread pool running backend calls.
    """

    tier = Tier.L3

    def __init__(
        self,
        backend: KeyValueBackend,
        timeout_seconds: float = 2.0,
        max_workers: int = 8,
    ) -> None:
        super().__init__(backend, timeout_seconds=timeout_seconds, max_workers=max_workers)

    def _prepare(self, entry: CacheEntry) -> CacheEntry:
        if entry.expires_at is None:
            return entry
        return entry.model_copy(update={"expires_at": None})
