from __future__ import annotations

import re
from dataclasses import dataclass

from loadcheck.errors import ThresholdParseError

OPERATORS = ("<", "<=", ">", ">=", "==", "===", "!=")

_METRIC_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_.\-]*$")
_EXPRESSION = re.compile(
    r"""^\s*
    (?P<stat>p\(\s*(?P<pct>\d+(?:\.\d+)?)\s*\)|avg|min|max|med|count|rate|value)
    \s*(?P<op><=|>=|===|==|!=|<|>)\s*
    (?P<value>-?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?)
    \s*$""",
    re.VERBOSE,
)


@dataclass(frozen=True, slots=True)
class Threshold:
    metric: str
    expression: str
    stat: str
    operator: str
    value: float
    percentile: float | None = None
    abort_on_fail: bool = False
    delay_abort_eval_sec: float = 0.0

    def describe(self) -> str:
        return f"{self.metric}: {self.expression}"


def parse_threshold(
    metric: str,
    expression: str,
    abort_on_fail: bool = False,
    delay_abort_eval_sec: float = 0.0,
) -> Threshold:
    """Parse ``<stat> <op> <number>`` for ``metric``, e.g. ``p(95)<200``."""
    if "{" in metric:
        msg = f"Sub-metric selectors are not supported: {metric!r}"
        raise ThresholdParseError(msg)
    if not _METRIC_NAME.match(metric):
        msg = f"Invalid metric name in threshold: {metric!r}"
        raise ThresholdParseError(msg)
    match = _EXPRESSION.match(expression)
    if match is None:
        msg = f"Invalid threshold expression for {metric}: {expression!r}"
        raise ThresholdParseError(msg)
    if delay_abort_eval_sec < 0:
        msg = f"delay_abort_eval_sec must be >= 0, got {delay_abort_eval_sec}"
        raise ThresholdParseError(msg)
    pct = match.group("pct")
    percentile = float(pct) if pct is not None else None
    if percentile is not None and percentile > 100:
        msg = f"Percentile out of range in {expression!r}"
        raise ThresholdParseError(msg)
    stat = f"p({pct})" if pct is not None else match.group("stat")
    return Threshold(
        metric=metric,
        expression=expression.strip(),
        stat=stat,
        operator=match.group("op"),
        value=float(match.group("value")),
        percentile=percentile,
        abort_on_fail=abort_on_fail,
        delay_abort_eval_sec=delay_abort_eval_sec,
    )
