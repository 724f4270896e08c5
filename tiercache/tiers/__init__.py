"""Cache tiers (L1 process-local / L2 distributed / L3 durable)."""

from tiercache.tiers.base import RemoteTier, TierBackend, TierStats
from tiercache.tiers.distributed import DistributedTier
from tiercache.tiers.durable import DurableTier
from tiercache.tiers.memory import MemoryTier

__all__ = [
    "TierBackend",
    "TierStats",
    "RemoteTier",
    "MemoryTier",
    "DistributedTier",
    "DurableTier",
]
