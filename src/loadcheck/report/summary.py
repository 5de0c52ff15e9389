from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping

from loadcheck.loadgen.runner import RunSummary
from loadcheck.metrics import CounterSnapshot, MetricSnapshot, RateSnapshot, TrendSnapshot
from loadcheck.thresholds import ThresholdResult

logger = logging.getLogger(__name__)

TREND_PERCENTILES = (90.0, 95.0, 99.0)
PASS_MARK = "✓"
FAIL_MARK = "✗"

_MS_METRICS = ("http_req_", "iteration_duration")
_BYTE_METRICS = ("data_sent", "data_received")
_NAME_WIDTH = 32


@dataclass(frozen=True, slots=True)
class Report:
    text: str
    document: Mapping[str, Any]
    passed: bool


def render(summary: RunSummary, results: Iterable[ThresholdResult]) -> Report:
    results = list(results)
    by_metric: dict[str, list[ThresholdResult]] = {}
    for result in results:
        by_metric.setdefault(result.threshold.metric, []).append(result)
    passed = all(result.passed for result in results)
    text = _render_text(summary, results, by_metric, passed)
    document = _render_document(summary, results, by_metric, passed)
    return Report(text=text, document=document, passed=passed)


def write_report(report: Report, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(report.document, indent=2, default=str), encoding="utf-8")
    logger.info("Summary written to %s", path)


def _render_text(
    summary: RunSummary,
    results: list[ThresholdResult],
    by_metric: Mapping[str, list[ThresholdResult]],
    passed: bool,
) -> str:
    lines = [
        "",
        f"  run: {summary.vus_max} max VUs, {summary.duration_sec:.2f}s, "
        f"{summary.iterations_completed} iterations completed "
        f"({summary.iterations_interrupted} interrupted, {summary.iteration_errors} failed)",
        f"  stop: {summary.stop_reason.value}" + (f" ({summary.stop_detail})" if summary.stop_detail else ""),
    ]
    if len(summary.workloads) > 1:
        for workload in summary.workloads:
            lines.append(
                f"    {workload.name}: {workload.vus_max} max VUs, {workload.iterations_completed} iterations, "
                f"{workload.stop_reason.value}"
            )
    if summary.forced_termination:
        lines.append("  WARNING: graceful stop period exceeded, in-flight iterations were cancelled")
    if summary.aborted:
        lines.append(f"  ABORTED: {summary.stop_reason.value}")

    if summary.checks:
        lines.append("")
        for tally in summary.checks:
            mark = PASS_MARK if tally.fails == 0 else FAIL_MARK
            lines.append(f"  {mark} {tally.name}")
            if tally.fails:
                total = tally.passes + tally.fails
                lines.append(
                    f"    ↳ {tally.passes / total:.2%} {PASS_MARK} {tally.passes} {FAIL_MARK} {tally.fails}"
                )

    lines.append("")
    for name in sorted(summary.metrics):
        snapshot = summary.metrics[name]
        metric_results = by_metric.get(name, [])
        if metric_results:
            mark = PASS_MARK if all(r.passed for r in metric_results) else FAIL_MARK
            prefix = f"{mark} "
        else:
            prefix = "  "
        label = name.ljust(_NAME_WIDTH, ".")
        lines.append(f"  {prefix}{label}: {_describe(snapshot, summary.duration_sec)}")
        for result in metric_results:
            lines.append(f"        {_threshold_line(result)}")

    missing = [r for r in results if r.threshold.metric not in summary.metrics]
    for result in missing:
        lines.append(f"  {FAIL_MARK} {result.threshold.metric}: {_threshold_line(result)}")

    lines.append("")
    if results:
        verdict = "PASSED" if passed else "FAILED"
        failed = sum(1 for r in results if not r.passed)
        lines.append(f"  thresholds: {verdict} ({len(results) - failed}/{len(results)} passed)")
    else:
        lines.append("  thresholds: none configured")
    lines.append("")
    return "\n".join(lines)


def _threshold_line(result: ThresholdResult) -> str:
    mark = PASS_MARK if result.passed else FAIL_MARK
    if result.failure is not None:
        return f"{mark} {result.threshold.expression} [{result.failure.value}]"
    return f"{mark} {result.threshold.expression} (observed {result.observed_value:.4g})"


def _describe(snapshot: MetricSnapshot, duration_sec: float) -> str:
    if isinstance(snapshot, TrendSnapshot):
        fmt = _ms if snapshot.name.startswith(_MS_METRICS) else _plain
        parts = [
            f"avg={fmt(snapshot.avg)}",
            f"min={fmt(snapshot.min)}",
            f"med={fmt(snapshot.med)}",
            f"max={fmt(snapshot.max)}",
        ]
        parts.extend(f"p({pct:g})={fmt(snapshot.percentile(pct))}" for pct in TREND_PERCENTILES)
        return " ".join(parts)
    if isinstance(snapshot, RateSnapshot):
        return f"{snapshot.rate:.2%} {PASS_MARK} {snapshot.passes} {FAIL_MARK} {snapshot.fails}"
    if isinstance(snapshot, CounterSnapshot):
        per_sec = snapshot.total / duration_sec if duration_sec > 0 else 0.0
        if snapshot.name in _BYTE_METRICS:
            return f"{_bytes(snapshot.total)} {_bytes(per_sec)}/s"
        return f"{snapshot.total:g} {per_sec:.2f}/s"
    msg = f"Unsupported metric snapshot: {snapshot!r}"
    raise TypeError(msg)


def _ms(value: float) -> str:
    if value >= 1000:
        return f"{value / 1000:.2f}s"
    return f"{value:.2f}ms"


def _plain(value: float) -> str:
    return f"{value:.4g}"


def _bytes(value: float) -> str:
    for unit in ("B", "kB", "MB", "GB"):
        if value < 1000 or unit == "GB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1000
    return f"{value:.1f} GB"


def _render_document(
    summary: RunSummary,
    results: list[ThresholdResult],
    by_metric: Mapping[str, list[ThresholdResult]],
    passed: bool,
) -> dict[str, Any]:
    metrics: dict[str, Any] = {}
    for name, snapshot in summary.metrics.items():
        entry: dict[str, Any] = {
            "type": snapshot.kind.value,
            "values": _values(snapshot, summary.duration_sec, by_metric.get(name, [])),
        }
        if name in by_metric:
            entry["thresholds"] = {
                r.threshold.expression: {"ok": r.passed, "observed": r.observed_value}
                for r in by_metric[name]
            }
        metrics[name] = entry
    return {
        "passed": passed,
        "run": {
            "started_at": summary.started_at.isoformat(),
            "finished_at": summary.finished_at.isoformat(),
            "duration_sec": round(summary.duration_sec, 3),
            "iterations_completed": summary.iterations_completed,
            "iterations_interrupted": summary.iterations_interrupted,
            "iteration_errors": summary.iteration_errors,
            "vus_max": summary.vus_max,
            "stop_reason": summary.stop_reason.value,
            "stop_detail": summary.stop_detail,
            "aborted": summary.aborted,
            "forced_termination": summary.forced_termination,
            "config": dict(summary.config.to_metadata()),
            "workloads": [
                {
                    "name": w.name,
                    "iterations_completed": w.iterations_completed,
                    "iterations_interrupted": w.iterations_interrupted,
                    "iteration_errors": w.iteration_errors,
                    "vus_max": w.vus_max,
                    "stop_reason": w.stop_reason.value,
                    "forced_termination": w.forced_termination,
                }
                for w in summary.workloads
            ],
        },
        "metrics": metrics,
        "checks": [
            {"name": tally.name, "passes": tally.passes, "fails": tally.fails} for tally in summary.checks
        ],
        "thresholds": [
            {
                "metric": r.threshold.metric,
                "expression": r.threshold.expression,
                "abort_on_fail": r.threshold.abort_on_fail,
                "passed": r.passed,
                "observed": r.observed_value,
                "failure": r.failure.value if r.failure is not None else None,
            }
            for r in results
        ],
    }


def _values(
    snapshot: MetricSnapshot,
    duration_sec: float,
    results: Iterable[ThresholdResult],
) -> dict[str, float]:
    if isinstance(snapshot, TrendSnapshot):
        values = {
            "count": float(snapshot.count),
            "avg": snapshot.avg,
            "min": snapshot.min,
            "med": snapshot.med,
            "max": snapshot.max,
        }
        pcts = set(TREND_PERCENTILES)
        pcts.update(r.threshold.percentile for r in results if r.threshold.percentile is not None)
        for pct in sorted(pcts):
            values[f"p({pct:g})"] = snapshot.percentile(pct)
        return values
    if isinstance(snapshot, RateSnapshot):
        return {"rate": snapshot.rate, "passes": float(snapshot.passes), "fails": float(snapshot.fails)}
    if isinstance(snapshot, CounterSnapshot):
        return {
            "count": snapshot.total,
            "rate": snapshot.total / duration_sec if duration_sec > 0 else 0.0,
        }
    msg = f"Unsupported metric snapshot: {snapshot!r}"
    raise TypeError(msg)
