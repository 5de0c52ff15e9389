from __future__ import annotations

from loadcheck.thresholds.evaluator import (
    ThresholdFailure,
    ThresholdResult,
    all_passed,
    evaluate,
    evaluate_snapshot,
)
from loadcheck.thresholds.parser import OPERATORS, Threshold, parse_threshold

__all__ = [
    "OPERATORS",
    "Threshold",
    "ThresholdFailure",
    "ThresholdResult",
    "all_passed",
    "evaluate",
    "evaluate_snapshot",
    "parse_threshold",
]
