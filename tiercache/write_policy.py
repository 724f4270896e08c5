"""
Write policies: how a ``put`` propagates across the tier chain.

A policy does not touch tiers itself.  ``apply`` returns a
:class:`PropagationPlan` that the :class:`~tiercache.manager.CacheManager`
carries out exactly once per ``put``.

- ``WRITE_THROUGH``: L3, then L2, then L1, synchronously.
- ``WRITE_BACK``: L1 (and optionally L2) synchronously, L3 deferred to
  the write-back worker.
- ``WRITE_AROUND``: L3 only; cached copies in L2 and L1 are invalidated.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Tuple, Union

from pydantic import BaseModel, Field

from tiercache.entry import Tier
from tiercache.exceptions import ConfigurationError


class WritePolicyType(str, Enum):
    """Closed set of write propagation strategies."""

    WRITE_THROUGH = "write_through"
    WRITE_BACK = "write_back"
    WRITE_AROUND = "write_around"


class PropagationPlan(BaseModel):
    """What the manager must do for one ``put``.

    Attributes:
        write_tiers: Tiers written synchronously, in order.
        invalidate_tiers: Tiers whose copy is removed after the writes.
        defer_durable: Enqueue a write-back task for L3.
        max_retries: Extra attempts per failing synchronous tier.
        require_all: Any synchronous tier failing fails the ``put``.
    """

    write_tiers: Tuple[Tier, ...] = ()
    invalidate_tiers: Tuple[Tier, ...] = ()
    defer_durable: bool = False
    max_retries: int = Field(default=0, ge=0)
    require_all: bool = True

    model_config = {"frozen": True}


class WritePolicy(ABC):
    """Strategy deciding how a write propagates."""

    policy_type: WritePolicyType

    @abstractmethod
    def apply(self, key: str, value: bytes) -> PropagationPlan:
        """Return the propagation plan for writing ``value`` under ``key``."""


class WriteThroughPolicy(WritePolicy):
    """Immediate-everywhere: acknowledged only once every tier holds the write.

    The durable tier is written first so a failure part-way never leaves a
    faster tier holding a value L3 lacks.

    Args:
        max_retries: Extra attempts for a failing tier before the ``put``
            is failed.
    """

    policy_type = WritePolicyType.WRITE_THROUGH

    def __init__(self, max_retries: int = 2) -> None:
        if max_retries < 0:
            raise ConfigurationError("max_retries must be >= 0")
        self.max_retries = max_retries

    def apply(self, key: str, value: bytes) -> PropagationPlan:
        return PropagationPlan(
            write_tiers=(Tier.L3, Tier.L2, Tier.L1),
            max_retries=self.max_retries,
            require_all=True,
        )


class WriteBackPolicy(WritePolicy):
    """Deferred-durable: acknowledged once L1 holds the write.

    Args:
        include_l2: Also write L2 synchronously (best effort) so the value
            survives L1 eviction before it reaches L3.
    """

    policy_type = WritePolicyType.WRITE_BACK

    def __init__(self, include_l2: bool = True) -> None:
        self.include_l2 = include_l2

    def apply(self, key: str, value: bytes) -> PropagationPlan:
        tiers = (Tier.L1, Tier.L2) if self.include_l2 else (Tier.L1,)
        return PropagationPlan(
            write_tiers=tiers,
            defer_durable=True,
            require_all=False,
        )


class WriteAroundPolicy(WritePolicy):
    """Durable-only: bypass the fast tiers and drop their stale copies."""

    policy_type = WritePolicyType.WRITE_AROUND

    def apply(self, key: str, value: bytes) -> PropagationPlan:
        return PropagationPlan(
            write_tiers=(Tier.L3,),
            invalidate_tiers=(Tier.L2, Tier.L1),
            require_all=True,
        )


def create_write_policy(
    kind: Union[WritePolicyType, str],
    *,
    max_retries: int = 2,
    include_l2: bool = True,
) -> WritePolicy:
    """Build a policy from its type or configuration name.

    Raises:
        ConfigurationError: If ``kind`` names no known policy.
    """
    try:
        policy_type = WritePolicyType(kind)
    except ValueError as exc:
        raise ConfigurationError(f"Unknown write policy: {kind!r}") from exc
    if policy_type is WritePolicyType.WRITE_THROUGH:
        return WriteThroughPolicy(max_retries=max_retries)
    if policy_type is WritePolicyType.WRITE_BACK:
        return WriteBackPolicy(include_l2=include_l2)
    return WriteAroundPolicy()
