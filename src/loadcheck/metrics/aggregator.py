from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np


@dataclass(frozen=True, slots=True)
class TrendStats:
    count: int
    min: float
    max: float
    avg: float
    med: float


def percentile(samples: Sequence[float], pct: float) -> float:
    """Linear-interpolated percentile; p(0) is the minimum and p(100) the maximum."""
    if not samples:
        return 0.0
    if pct < 0 or pct > 100:
        msg = f"Percentile must be within [0, 100], got {pct}"
        raise ValueError(msg)
    return float(np.percentile(np.asarray(samples, dtype=float), pct))


def trend_stats(samples: Sequence[float]) -> TrendStats:
    if not samples:
        return TrendStats(count=0, min=0.0, max=0.0, avg=0.0, med=0.0)
    values = np.asarray(samples, dtype=float)
    return TrendStats(
        count=int(values.size),
        min=float(values.min()),
        max=float(values.max()),
        avg=float(values.mean()),
        med=float(np.percentile(values, 50)),
    )
