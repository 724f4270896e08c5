"""
tiercache -- multi-tier cache (process-local L1, distributed L2, durable L3).

Typical use::

    from tiercache import CacheManager

    with CacheManager.from_settings() as cache:
        cache.put("user:42", b"...")
        result = cache.get("user:42")
"""

from tiercache.entry import CacheEntry, GetResult, Tier
from tiercache.eviction import EvictionPolicyType, FIFOPolicy, LRUPolicy, create_eviction_policy
from tiercache.exceptions import (
    BackendError,
    ConfigurationError,
    DurabilityFailureError,
    PartialRemovalError,
    TierCacheException,
    TierUnavailableError,
    VersionConflictError,
    WriteBackError,
    WritePropagationError,
)
from tiercache.manager import CacheManager
from tiercache.write_policy import (
    WriteAroundPolicy,
    WriteBackPolicy,
    WritePolicyType,
    WriteThroughPolicy,
    create_write_policy,
)

__all__ = [
    "CacheManager",
    "CacheEntry",
    "GetResult",
    "Tier",
    "EvictionPolicyType",
    "LRUPolicy",
    "FIFOPolicy",
    "create_eviction_policy",
    "WritePolicyType",
    "WriteThroughPolicy",
    "WriteBackPolicy",
    "WriteAroundPolicy",
    "create_write_policy",
    "TierCacheException",
    "ConfigurationError",
    "BackendError",
    "TierUnavailableError",
    "VersionConflictError",
    "DurabilityFailureError",
    "WritePropagationError",
    "PartialRemovalError",
    "WriteBackError",
]
