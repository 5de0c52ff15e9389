from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from random import Random
from typing import Any, Awaitable, Callable, Mapping

from loadcheck.loadgen.checks import Predicate, check
from loadcheck.loadgen.client import HttpClient
from loadcheck.metrics import MetricKind, MetricStore


@dataclass(frozen=True, slots=True)
class MetricHandle:
    """Custom metric bound to a store; ``add`` records one value."""

    name: str
    kind: MetricKind
    store: MetricStore

    def add(self, value: Any = 1) -> None:
        self.store.record(self.name, value)


@dataclass(frozen=True, slots=True)
class RunContext:
    """Everything a scenario iteration may touch.

    ``random`` belongs to the VU; with a configured seed the sequence of
    think times and generated test data repeats from run to run.
    """

    http: HttpClient
    metrics: MetricStore
    env: Mapping[str, str]
    vu_id: int
    iteration: int
    scenario: str = "default"
    random: Random = field(default_factory=Random)

    def check(self, value: Any, predicates: Mapping[str, Predicate]) -> bool:
        return check(self.metrics, value, predicates)

    def think_time(self, seconds: float, max_seconds: float | None = None) -> float:
        if max_seconds is None:
            return seconds
        if max_seconds < seconds:
            msg = f"max_seconds ({max_seconds}) is below seconds ({seconds})"
            raise ValueError(msg)
        return self.random.uniform(seconds, max_seconds)

    async def sleep(self, seconds: float, max_seconds: float | None = None) -> None:
        """Pause for ``seconds``, or a uniformly random time up to ``max_seconds``."""
        pause = self.think_time(seconds, max_seconds)
        if pause > 0:
            await asyncio.sleep(pause)

    def counter(self, name: str) -> MetricHandle:
        return self._handle(name, MetricKind.COUNTER)

    def rate(self, name: str) -> MetricHandle:
        return self._handle(name, MetricKind.RATE)

    def trend(self, name: str) -> MetricHandle:
        return self._handle(name, MetricKind.TREND)

    def _handle(self, name: str, kind: MetricKind) -> MetricHandle:
        self.metrics.register(name, kind)
        return MetricHandle(name=name, kind=kind, store=self.metrics)


ScenarioFn = Callable[[RunContext], Awaitable[None]]
