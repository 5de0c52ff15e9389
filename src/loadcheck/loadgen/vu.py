from __future__ import annotations

import asyncio
import logging
import time
from random import Random
from typing import Mapping, Protocol

from loadcheck.errors import ScenarioAbort
from loadcheck.loadgen.client import HttpClient
from loadcheck.loadgen.context import RunContext, ScenarioFn
from loadcheck.metrics import MetricKind, MetricStore

logger = logging.getLogger(__name__)

ITERATIONS = "iterations"
ITERATION_DURATION = "iteration_duration"


class IterationGate(Protocol):
    def try_start_iteration(self, vu: VirtualUser) -> bool:
        ...

    def iteration_completed(self) -> None:
        ...

    def iteration_failed(self) -> None:
        ...

    def iteration_interrupted(self) -> None:
        ...

    def scenario_aborted(self, message: str) -> None:
        ...


class VirtualUser:
    """One independent loop running scenario iterations until told to stop.

    The stop signal is honoured between iterations; an iteration already in
    progress runs to its end unless the task is cancelled. A ``one_shot`` VU
    is an open-model arrival and leaves after a single iteration.
    """

    def __init__(
        self,
        vu_id: int,
        gate: IterationGate,
        scenario: ScenarioFn,
        http: HttpClient,
        metrics: MetricStore,
        env: Mapping[str, str],
        start_delay_sec: float = 0.0,
        scenario_name: str = "default",
        rng: Random | None = None,
        one_shot: bool = False,
    ) -> None:
        self.vu_id = vu_id
        self.retiring = False
        self.in_iteration = False
        self.iterations = 0
        self._gate = gate
        self._scenario = scenario
        self._http = http
        self._metrics = metrics
        self._env = env
        self._start_delay_sec = start_delay_sec
        self._scenario_name = scenario_name
        self._random = rng or Random()
        self._one_shot = one_shot
        metrics.register(ITERATIONS, MetricKind.COUNTER)
        metrics.register(ITERATION_DURATION, MetricKind.TREND)

    async def run(self) -> None:
        if self._start_delay_sec > 0:
            await asyncio.sleep(self._start_delay_sec)
        while self._gate.try_start_iteration(self):
            ctx = RunContext(
                http=self._http,
                metrics=self._metrics,
                env=self._env,
                vu_id=self.vu_id,
                iteration=self.iterations,
                scenario=self._scenario_name,
                random=self._random,
            )
            self.in_iteration = True
            started = time.perf_counter()
            try:
                await self._scenario(ctx)
            except asyncio.CancelledError:
                self._gate.iteration_interrupted()
                raise
            except ScenarioAbort as exc:
                logger.warning("VU %d aborted the run: %s", self.vu_id, exc)
                self._gate.scenario_aborted(str(exc) or "scenario requested abort")
                self.iterations += 1
                return
            except Exception:
                logger.exception("VU %d iteration %d failed", self.vu_id, self.iterations)
                self._gate.iteration_failed()
            else:
                self._metrics.record(ITERATIONS, 1)
                self._metrics.record(ITERATION_DURATION, (time.perf_counter() - started) * 1000.0)
                self._gate.iteration_completed()
            finally:
                self.in_iteration = False
            self.iterations += 1
            if self._one_shot:
                return
            # Scenarios that never await would otherwise starve the scheduler.
            await asyncio.sleep(0)
