from __future__ import annotations

import logging
import operator
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, Iterable, Mapping

from loadcheck.metrics import CounterSnapshot, MetricSnapshot, RateSnapshot, TrendSnapshot
from loadcheck.thresholds.parser import Threshold

if TYPE_CHECKING:
    from loadcheck.loadgen.runner import RunSummary

logger = logging.getLogger(__name__)

_COMPARE: dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "===": operator.eq,
    "!=": operator.ne,
}


class ThresholdFailure(str, Enum):
    METRIC_MISSING = "ThresholdMetricMissing"
    STAT_UNSUPPORTED = "ThresholdStatUnsupported"


@dataclass(frozen=True, slots=True)
class ThresholdResult:
    threshold: Threshold
    observed_value: float | None
    passed: bool
    failure: ThresholdFailure | None = None


def evaluate(summary: RunSummary, thresholds: Iterable[Threshold]) -> list[ThresholdResult]:
    """Evaluate thresholds against the frozen metrics of a finished run."""
    return evaluate_snapshot(summary.metrics, thresholds, summary.duration_sec)


def evaluate_snapshot(
    metrics: Mapping[str, MetricSnapshot],
    thresholds: Iterable[Threshold],
    duration_sec: float,
) -> list[ThresholdResult]:
    results: list[ThresholdResult] = []
    for threshold in thresholds:
        snapshot = metrics.get(threshold.metric)
        if snapshot is None:
            logger.warning("Threshold %s references unknown metric", threshold.describe())
            results.append(
                ThresholdResult(threshold, None, passed=False, failure=ThresholdFailure.METRIC_MISSING)
            )
            continue
        observed = _observe(snapshot, threshold, duration_sec)
        if observed is None:
            logger.warning(
                "Threshold %s: statistic not available on %s metrics",
                threshold.describe(),
                snapshot.kind.value,
            )
            results.append(
                ThresholdResult(threshold, None, passed=False, failure=ThresholdFailure.STAT_UNSUPPORTED)
            )
            continue
        passed = _COMPARE[threshold.operator](observed, threshold.value)
        results.append(ThresholdResult(threshold, observed, passed=passed))
    return results


def all_passed(results: Iterable[ThresholdResult]) -> bool:
    return all(result.passed for result in results)


def _observe(snapshot: MetricSnapshot, threshold: Threshold, duration_sec: float) -> float | None:
    stat = threshold.stat
    if isinstance(snapshot, TrendSnapshot):
        if threshold.percentile is not None:
            return snapshot.percentile(threshold.percentile)
        if stat in ("avg", "min", "max", "med"):
            return float(getattr(snapshot, stat))
        if stat == "count":
            return float(snapshot.count)
        return None
    if isinstance(snapshot, RateSnapshot):
        if stat in ("rate", "value"):
            return snapshot.rate
        return None
    if isinstance(snapshot, CounterSnapshot):
        if stat == "count":
            return snapshot.total
        if stat == "rate":
            return snapshot.total / duration_sec if duration_sec > 0 else 0.0
        return None
    return None
