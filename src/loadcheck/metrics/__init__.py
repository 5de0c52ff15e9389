from __future__ import annotations

from loadcheck.metrics.aggregator import TrendStats, percentile, trend_stats
from loadcheck.metrics.models import (
    CheckTally,
    CounterSnapshot,
    MetricKind,
    MetricSnapshot,
    RateSnapshot,
    StoreSnapshot,
    TrendSnapshot,
)
from loadcheck.metrics.store import CHECKS_METRIC, MetricStore

__all__ = [
    "CHECKS_METRIC",
    "CheckTally",
    "CounterSnapshot",
    "MetricKind",
    "MetricSnapshot",
    "MetricStore",
    "RateSnapshot",
    "StoreSnapshot",
    "TrendSnapshot",
    "TrendStats",
    "percentile",
    "trend_stats",
]
