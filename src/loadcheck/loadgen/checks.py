from __future__ import annotations

import logging
from typing import Any, Callable, Mapping

from loadcheck.metrics import MetricStore

logger = logging.getLogger(__name__)

Predicate = Callable[[Any], bool]


def check(metrics: MetricStore, value: Any, predicates: Mapping[str, Predicate]) -> bool:
    """Evaluate every named predicate against ``value`` and record the outcomes.

    Each predicate contributes one sample to the ``checks`` rate. All
    predicates run even after one fails. A predicate that raises counts as
    failed. Returns True only when every predicate passed.
    """
    all_ok = True
    for name, predicate in predicates.items():
        try:
            passed = bool(predicate(value))
        except Exception:
            logger.debug("Check %r raised", name, exc_info=True)
            passed = False
        metrics.record_check(name, passed)
        all_ok = all_ok and passed
    return all_ok
