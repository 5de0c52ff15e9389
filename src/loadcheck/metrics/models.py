from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Mapping, Union

from loadcheck.metrics.aggregator import percentile


class MetricKind(str, Enum):
    COUNTER = "counter"
    RATE = "rate"
    TREND = "trend"


@dataclass(frozen=True, slots=True)
class CounterSnapshot:
    name: str
    total: float
    count: int

    @property
    def kind(self) -> MetricKind:
        return MetricKind.COUNTER


@dataclass(frozen=True, slots=True)
class RateSnapshot:
    name: str
    passes: int
    total: int

    @property
    def kind(self) -> MetricKind:
        return MetricKind.RATE

    @property
    def fails(self) -> int:
        return self.total - self.passes

    @property
    def rate(self) -> float:
        if self.total == 0:
            return 0.0
        return self.passes / self.total


@dataclass(frozen=True, slots=True)
class TrendSnapshot:
    name: str
    count: int
    min: float
    max: float
    avg: float
    med: float
    samples: tuple[float, ...] = field(repr=False)

    @property
    def kind(self) -> MetricKind:
        return MetricKind.TREND

    def percentile(self, pct: float) -> float:
        return percentile(self.samples, pct)


MetricSnapshot = Union[CounterSnapshot, RateSnapshot, TrendSnapshot]


@dataclass(frozen=True, slots=True)
class CheckTally:
    name: str
    passes: int
    fails: int


@dataclass(frozen=True, slots=True)
class StoreSnapshot(Mapping[str, MetricSnapshot]):
    """Point-in-time view of every metric in a store."""

    metrics: Mapping[str, MetricSnapshot]
    checks: tuple[CheckTally, ...] = ()

    def __getitem__(self, name: str) -> MetricSnapshot:
        return self.metrics[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self.metrics)

    def __len__(self) -> int:
        return len(self.metrics)
