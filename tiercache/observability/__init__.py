"""Observability sink (counters, queue depth, durability failures)."""

from tiercache.observability.metrics import (
    CacheMetrics,
    DurabilityFailureRecord,
    MetricsCollector,
    MetricsConfig,
    TierCounters,
)

__all__ = [
    "CacheMetrics",
    "DurabilityFailureRecord",
    "MetricsCollector",
    "MetricsConfig",
    "TierCounters",
]
