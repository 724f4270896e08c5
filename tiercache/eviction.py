"""
Eviction policies for bounded tiers.

A policy only tracks key order; the owning tier holds the entries and
its lock.  Policies are therefore not thread-safe on their own and must
be driven from inside the tier's critical section.

Performance characteristics:
- LRU / FIFO: O(1) for every hook, backed by an ``OrderedDict``.
"""

from abc import ABC, abstractmethod
from collections import OrderedDict
from enum import Enum
from typing import List, Union

from tiercache.exceptions import ConfigurationError


class EvictionPolicyType(str, Enum):
    """Closed set of eviction strategies selectable at tier construction."""

    LRU = "lru"    # Least Recently Used - evict oldest access
    FIFO = "fifo"  # First In First Out - evict oldest insertion


class EvictionPolicy(ABC):
    """Strategy consulted by a bounded tier to choose eviction victims."""

    policy_type: EvictionPolicyType

    def __init__(self) -> None:
        self._order: "OrderedDict[str, None]" = OrderedDict()

    @abstractmethod
    def on_access(self, key: str) -> None:
        """Record a hit on ``key`` (including promotion writes)."""

    def on_insert(self, key: str) -> None:
        """Record that ``key`` was newly inserted."""
        self._order[key] = None
        self._order.move_to_end(key)

    def on_remove(self, key: str) -> None:
        """Forget ``key`` after an explicit removal or eviction."""
        self._order.pop(key, None)

    def select_victim(self) -> str:
        """Return the key to evict next.

        Raises:
            LookupError: If the policy tracks no keys.
        """
        if not self._order:
            raise LookupError("No eviction candidates")
        return next(iter(self._order))

    def keys(self) -> List[str]:
        """Tracked keys, next victim first."""
        return list(self._order)

    def __len__(self) -> int:
        return len(self._order)


class LRUPolicy(EvictionPolicy):
    """Victim is the least-recently-touched key."""

    policy_type = EvictionPolicyType.LRU

    def on_access(self, key: str) -> None:
        if key in self._order:
            self._order.move_to_end(key)


class FIFOPolicy(EvictionPolicy):
    """Victim is the oldest-inserted key still present; accesses are ignored."""

    policy_type = EvictionPolicyType.FIFO

    def on_access(self, key: str) -> None:
        return None


_POLICIES = {
    EvictionPolicyType.LRU: LRUPolicy,
    EvictionPolicyType.FIFO: FIFOPolicy,
}


def create_eviction_policy(kind: Union[EvictionPolicyType, str]) -> EvictionPolicy:
    """Build a fresh policy instance.

    Args:
        kind: Policy type, or its configuration name (``"lru"``/``"fifo"``).

    Raises:
        ConfigurationError: If ``kind`` names no known policy.
    """
    try:
        policy_type = EvictionPolicyType(kind)
    except ValueError as exc:
        raise ConfigurationError(f"Unknown eviction policy: {kind!r}") from exc
    return _POLICIES[policy_type]()
