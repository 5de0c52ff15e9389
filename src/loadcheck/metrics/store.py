from __future__ import annotations

import logging
import math
import threading
from numbers import Real
from typing import Any

from loadcheck.errors import MetricKindConflict, UnknownMetricOrKindMismatch
from loadcheck.metrics.aggregator import trend_stats
from loadcheck.metrics.models import (
    CheckTally,
    CounterSnapshot,
    MetricKind,
    MetricSnapshot,
    RateSnapshot,
    StoreSnapshot,
    TrendSnapshot,
)

logger = logging.getLogger(__name__)

CHECKS_METRIC = "checks"


class _Metric:
    kind: MetricKind

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.Lock()

    def add(self, value: Any) -> None:
        raise NotImplementedError

    def snapshot(self) -> MetricSnapshot:
        raise NotImplementedError

    def _reject(self, value: Any) -> UnknownMetricOrKindMismatch:
        return UnknownMetricOrKindMismatch(
            f"Metric {self.name!r} is a {self.kind.value} and cannot record {value!r}"
        )

    def _number(self, value: Any) -> float:
        if isinstance(value, bool) or not isinstance(value, Real):
            raise self._reject(value)
        number = float(value)
        if not math.isfinite(number):
            raise self._reject(value)
        return number


class _Counter(_Metric):
    kind = MetricKind.COUNTER

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self._total = 0.0
        self._count = 0

    def add(self, value: Any) -> None:
        number = self._number(value)
        with self._lock:
            self._total += number
            self._count += 1

    def snapshot(self) -> CounterSnapshot:
        with self._lock:
            return CounterSnapshot(name=self.name, total=self._total, count=self._count)


class _Rate(_Metric):
    kind = MetricKind.RATE

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self._passes = 0
        self._total = 0

    def add(self, value: Any) -> None:
        if not isinstance(value, (bool, Real)):
            raise self._reject(value)
        hit = bool(value)
        with self._lock:
            self._total += 1
            if hit:
                self._passes += 1

    def snapshot(self) -> RateSnapshot:
        with self._lock:
            return RateSnapshot(name=self.name, passes=self._passes, total=self._total)


class _Trend(_Metric):
    kind = MetricKind.TREND

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self._samples: list[float] = []

    def add(self, value: Any) -> None:
        number = self._number(value)
        with self._lock:
            self._samples.append(number)

    def snapshot(self) -> TrendSnapshot:
        with self._lock:
            samples = tuple(self._samples)
        stats = trend_stats(samples)
        return TrendSnapshot(
            name=self.name,
            count=stats.count,
            min=stats.min,
            max=stats.max,
            avg=stats.avg,
            med=stats.med,
            samples=samples,
        )


_FACTORIES: dict[MetricKind, type[_Metric]] = {
    MetricKind.COUNTER: _Counter,
    MetricKind.RATE: _Rate,
    MetricKind.TREND: _Trend,
}


class MetricStore:
    """Run-scoped registry of counters, rates and trends.

    Every metric carries its own lock, so writers to different metrics never
    contend. The registry lock is only taken when a metric is created.
    ``record`` does not auto-register: metrics must be registered first,
    either explicitly or through the get-or-create handles on the run
    context.
    """

    def __init__(self) -> None:
        self._metrics: dict[str, _Metric] = {}
        self._registry_lock = threading.Lock()
        self._checks: dict[str, list[int]] = {}
        self._checks_lock = threading.Lock()

    def register(self, name: str, kind: MetricKind) -> MetricKind:
        if not name:
            msg = "Metric name must not be empty"
            raise ValueError(msg)
        kind = MetricKind(kind)
        with self._registry_lock:
            existing = self._metrics.get(name)
            if existing is None:
                self._metrics[name] = _FACTORIES[kind](name)
                logger.debug("Registered %s metric %s", kind.value, name)
                return kind
        if existing.kind is not kind:
            raise MetricKindConflict(name, existing.kind.value, kind.value)
        return kind

    def record(self, name: str, value: Any) -> None:
        metric = self._metrics.get(name)
        if metric is None:
            msg = f"Metric {name!r} is not registered"
            raise UnknownMetricOrKindMismatch(msg)
        metric.add(value)

    def record_check(self, name: str, passed: bool) -> None:
        self.register(CHECKS_METRIC, MetricKind.RATE)
        self.record(CHECKS_METRIC, bool(passed))
        with self._checks_lock:
            tally = self._checks.setdefault(name, [0, 0])
            tally[0 if passed else 1] += 1

    def __contains__(self, name: object) -> bool:
        return name in self._metrics

    def snapshot(self) -> StoreSnapshot:
        with self._registry_lock:
            metrics = list(self._metrics.values())
        with self._checks_lock:
            checks = tuple(
                CheckTally(name=name, passes=tally[0], fails=tally[1])
                for name, tally in self._checks.items()
            )
        return StoreSnapshot(
            metrics={metric.name: metric.snapshot() for metric in metrics},
            checks=checks,
        )
