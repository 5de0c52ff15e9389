from __future__ import annotations

import asyncio
import logging
import signal
import sys
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum, IntEnum
from random import Random
from typing import Callable, Iterable, Mapping

import httpx

from loadcheck.config import RunConfig, ScenarioConfig
from loadcheck.errors import ConfigError
from loadcheck.loadgen.client import HttpClient
from loadcheck.loadgen.context import ScenarioFn
from loadcheck.loadgen.stages import VuSchedule, arrival_offsets, schedule_for
from loadcheck.loadgen.vu import VirtualUser
from loadcheck.metrics import CheckTally, MetricSnapshot, MetricStore, RateSnapshot, StoreSnapshot
from loadcheck.thresholds import Threshold, ThresholdFailure, ThresholdResult, evaluate_snapshot

logger = logging.getLogger(__name__)

_TICK_SEC = 0.1


class StopReason(str, Enum):
    DURATION = "duration_reached"
    ITERATIONS = "iterations_reached"
    ARRIVALS = "arrivals_completed"
    THRESHOLD = "threshold_abort"
    SCENARIO_ERRORS = "scenario_errors"
    SCENARIO_ABORT = "scenario_abort"
    OPERATOR = "operator_abort"


_ABORTS = frozenset(
    {StopReason.THRESHOLD, StopReason.SCENARIO_ERRORS, StopReason.SCENARIO_ABORT, StopReason.OPERATOR}
)


class ExitCode(IntEnum):
    OK = 0
    THRESHOLDS_FAILED = 99
    INVALID_CONFIG = 104
    THRESHOLD_ABORT = 105
    SCENARIO_ABORT = 107


@dataclass(frozen=True, slots=True)
class WorkloadSummary:
    name: str
    iterations_completed: int
    iterations_interrupted: int
    iteration_errors: int
    vus_max: int
    stop_reason: StopReason
    stop_detail: str
    forced_termination: bool


@dataclass(frozen=True, slots=True)
class RunSummary:
    config: RunConfig
    started_at: datetime
    finished_at: datetime
    duration_sec: float
    iterations_completed: int
    iterations_interrupted: int
    iteration_errors: int
    vus_max: int
    stop_reason: StopReason
    stop_detail: str
    forced_termination: bool
    metrics: StoreSnapshot
    workloads: tuple[WorkloadSummary, ...] = ()

    @property
    def aborted(self) -> bool:
        return self.stop_reason in _ABORTS

    @property
    def checks(self) -> tuple[CheckTally, ...]:
        return self.metrics.checks


class _VuGauge:
    """Active (non-retiring) VUs now and at peak."""

    def __init__(self) -> None:
        self.current = 0
        self.peak = 0

    def add(self, delta: int) -> None:
        self.current += delta
        self.peak = max(self.peak, self.current)


StopCallback = Callable[[StopReason, str], None]


class Scheduler:
    """Spawns and supervises the virtual users of one workload.

    Closed-model workloads keep a VU population at the (possibly ramping)
    target; open-model workloads start one single-iteration VU per arrival.
    All bookkeeping happens on the event loop thread between awaits, so
    iteration counts need no locking.
    """

    def __init__(
        self,
        workload: ScenarioConfig,
        scenario: ScenarioFn,
        http: HttpClient,
        metrics: MetricStore,
        env: Mapping[str, str],
        gauge: _VuGauge | None = None,
        on_abort: StopCallback | None = None,
        seed: int | None = None,
    ) -> None:
        self.name = workload.name
        self._config = workload.profile
        self._scenario = scenario
        self._http = http
        self._metrics = metrics
        self._env = env
        self._gauge = gauge or _VuGauge()
        self._on_abort = on_abort
        self._seed = seed
        self._schedule: VuSchedule = schedule_for(self._config)
        self._arrivals: deque[float] | None = (
            deque(arrival_offsets(self._config.injection)) if self._config.injection else None
        )
        self._stopping = False
        self._stop_reason: StopReason | None = None
        self._stop_detail = ""
        self._wake = asyncio.Event()
        self._tasks: dict[VirtualUser, asyncio.Task[None]] = {}
        self._retire_deadlines: dict[VirtualUser, float] = {}
        self._next_vu_id = 1
        self._active = 0
        self._vus_max = 0
        self._claimed = 0
        self._completed = 0
        self._interrupted = 0
        self._errors = 0
        self._forced = False

    def try_start_iteration(self, vu: VirtualUser) -> bool:
        if self._stopping or vu.retiring:
            return False
        cap = self._config.iterations
        if cap is not None and self._claimed >= cap:
            self.stop(StopReason.ITERATIONS, f"{cap} iterations claimed")
            return False
        self._claimed += 1
        return True

    def iteration_completed(self) -> None:
        self._completed += 1

    def iteration_failed(self) -> None:
        self._errors += 1
        limit = self._config.max_iteration_errors
        if limit is not None and self._errors > limit:
            self.stop(StopReason.SCENARIO_ERRORS, f"{self._errors} iterations failed (limit {limit})")

    def iteration_interrupted(self) -> None:
        self._interrupted += 1

    def scenario_aborted(self, message: str) -> None:
        self._errors += 1
        self.stop(StopReason.SCENARIO_ABORT, message)

    def stop(self, reason: StopReason, detail: str = "") -> None:
        if self._stopping:
            return
        self._stopping = True
        self._stop_reason = reason
        self._stop_detail = detail
        logger.info("Stopping %s: %s %s", self.name, reason.value, detail)
        self._wake.set()
        if reason in _ABORTS and self._on_abort is not None:
            self._on_abort(reason, detail)

    async def execute(self) -> WorkloadSummary:
        try:
            await self._wait(self._config.start_time_sec)
            started = time.perf_counter()
            duration = self._config.total_duration_sec()
            deadline = started + duration if duration is not None else None
            logger.info(
                "Starting %s: max %d VUs, %s, duration=%s, iterations=%s",
                self.name,
                self._config.max_vus,
                self._config.stop_mode.value,
                duration,
                self._config.iterations,
            )
            self._adjust_vus(0.0, initial=True)
            while not self._stopping:
                now = time.perf_counter()
                if deadline is not None and now >= deadline:
                    self.stop(StopReason.DURATION, f"{duration:g}s elapsed")
                    break
                self._reap(now)
                if self._finished():
                    break
                self._adjust_vus(now - started)
                timeout = _TICK_SEC if deadline is None else max(0.0, min(_TICK_SEC, deadline - now))
                if self._arrivals:
                    timeout = max(0.0, min(timeout, started + self._arrivals[0] - now))
                await self._wait(timeout)
        except asyncio.CancelledError:
            self.stop(StopReason.OPERATOR, "run cancelled")
            await self._shutdown()
            raise
        await self._shutdown()
        return WorkloadSummary(
            name=self.name,
            iterations_completed=self._completed,
            iterations_interrupted=self._interrupted,
            iteration_errors=self._errors,
            vus_max=self._vus_max,
            stop_reason=self._stop_reason or StopReason.DURATION,
            stop_detail=self._stop_detail,
            forced_termination=self._forced,
        )

    async def _wait(self, timeout: float) -> None:
        if self._stopping or timeout <= 0:
            return
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass
        self._wake.clear()

    def _finished(self) -> bool:
        if self._tasks:
            return False
        if self._arrivals is not None:
            if self._arrivals:
                return False
            self.stop(StopReason.ARRIVALS, f"{sum(s.arrivals for s in self._config.injection)} arrivals served")
            return True
        if self._config.iterations is not None and self._claimed:
            self.stop(StopReason.ITERATIONS, f"{self._config.iterations} iterations claimed")
            return True
        return False

    def _adjust_vus(self, elapsed: float, initial: bool = False) -> None:
        if self._stopping:
            return
        if self._arrivals is not None:
            while self._arrivals and self._arrivals[0] <= elapsed:
                self._arrivals.popleft()
                self._spawn(0.0, one_shot=True)
            return
        target = self._schedule.target_at(elapsed)
        active = [vu for vu in self._tasks if not vu.retiring]
        if len(active) < target:
            missing = target - len(active)
            stagger = self._config.stagger_sec if initial else 0.0
            for idx in range(missing):
                self._spawn(stagger * idx / missing)
        elif len(active) > target:
            now = time.perf_counter()
            for vu in sorted(active, key=lambda v: v.vu_id, reverse=True)[: len(active) - target]:
                vu.retiring = True
                self._track(-1)
                self._retire_deadlines[vu] = now + self._config.graceful_ramp_down_sec
            logger.debug("Ramping %s down to %d VUs", self.name, target)

    def _spawn(self, start_delay_sec: float, one_shot: bool = False) -> None:
        vu_id = self._next_vu_id
        vu = VirtualUser(
            vu_id=vu_id,
            gate=self,
            scenario=self._scenario,
            http=self._http,
            metrics=self._metrics,
            env=self._env,
            start_delay_sec=start_delay_sec,
            scenario_name=self.name,
            rng=Random(f"{self._seed}:{self.name}:{vu_id}") if self._seed is not None else None,
            one_shot=one_shot,
        )
        self._next_vu_id += 1
        task = asyncio.create_task(vu.run(), name=f"{self.name}-vu-{vu_id}")
        task.add_done_callback(lambda _: self._wake.set())
        self._tasks[vu] = task
        self._track(1)

    def _track(self, delta: int) -> None:
        self._active += delta
        self._vus_max = max(self._vus_max, self._active)
        self._gauge.add(delta)

    def _release(self, vu: VirtualUser) -> None:
        if not vu.retiring:
            self._track(-1)

    def _reap(self, now: float) -> None:
        for vu, task in list(self._tasks.items()):
            if task.done():
                del self._tasks[vu]
                self._retire_deadlines.pop(vu, None)
                self._release(vu)
                self._raise_if_crashed(task)
                continue
            deadline = self._retire_deadlines.get(vu)
            if deadline is not None and now >= deadline and vu.in_iteration:
                logger.warning("VU %d of %s exceeded graceful ramp-down, cancelling", vu.vu_id, self.name)
                self._forced = True
                task.cancel()
                self._retire_deadlines.pop(vu)

    async def _shutdown(self) -> None:
        self._stopping = True
        tasks = list(self._tasks.values())
        if not tasks:
            return
        grace = self._config.graceful_stop_sec
        pending = {task for task in tasks if not task.done()}
        if pending and grace > 0:
            _, pending = await asyncio.wait(pending, timeout=grace)
        if pending:
            busy = [vu for vu, task in self._tasks.items() if task in pending and vu.in_iteration]
            if busy:
                self._forced = True
                logger.warning(
                    "Graceful stop of %.1fs exceeded, cancelling %d VUs of %s mid-iteration",
                    grace,
                    len(busy),
                    self.name,
                )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        for vu in self._tasks:
            self._release(vu)
        for task in tasks:
            self._raise_if_crashed(task)
        self._tasks.clear()
        self._retire_deadlines.clear()

    @staticmethod
    def _raise_if_crashed(task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            raise exc


class LoadRun:
    """Runs every configured workload concurrently against one metric store.

    An abort from any workload, an abort-on-fail threshold or the operator
    stops all of them; otherwise each ends on its own stop condition.
    """

    def __init__(
        self,
        config: RunConfig,
        scenario: ScenarioFn,
        http: HttpClient,
        metrics: MetricStore,
        exec_fns: Mapping[str, ScenarioFn] | None = None,
    ) -> None:
        self._config = config
        self._metrics = metrics
        self._gauge = _VuGauge()
        self._stop_reason: StopReason | None = None
        self._stop_detail = ""
        self._halting = False
        self._finished: list[WorkloadSummary] = []
        self._schedulers = [
            Scheduler(
                workload,
                _bind(workload, scenario, exec_fns or {}),
                http,
                metrics,
                env={**config.env, **workload.profile.env} if workload.profile is not config else config.env,
                gauge=self._gauge,
                on_abort=self.stop,
                seed=config.seed,
            )
            for workload in config.workloads()
        ]

    def stop(self, reason: StopReason, detail: str = "") -> None:
        if self._stop_reason is None:
            self._stop_reason = reason
            self._stop_detail = detail
        if self._halting:
            return
        self._halting = True
        for scheduler in self._schedulers:
            scheduler.stop(reason, detail)

    async def execute(self) -> RunSummary:
        started_at = datetime.now(timezone.utc)
        started = time.perf_counter()
        watcher = asyncio.create_task(self._watch_thresholds(started), name="threshold-watch")
        try:
            outcomes = await asyncio.gather(
                *(self._supervise(scheduler) for scheduler in self._schedulers),
                return_exceptions=True,
            )
        finally:
            watcher.cancel()
            await asyncio.gather(watcher, return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        workloads = tuple(outcomes)
        finished = time.perf_counter()
        if self._stop_reason is not None:
            reason, detail = self._stop_reason, self._stop_detail
        elif self._finished:
            reason, detail = self._finished[-1].stop_reason, self._finished[-1].stop_detail
        else:
            reason, detail = StopReason.DURATION, ""
        summary = RunSummary(
            config=self._config,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            duration_sec=finished - started,
            iterations_completed=sum(w.iterations_completed for w in workloads),
            iterations_interrupted=sum(w.iterations_interrupted for w in workloads),
            iteration_errors=sum(w.iteration_errors for w in workloads),
            vus_max=self._gauge.peak,
            stop_reason=reason,
            stop_detail=detail,
            forced_termination=any(w.forced_termination for w in workloads),
            metrics=self._metrics.snapshot(),
            workloads=workloads,
        )
        logger.info(
            "Run finished in %.2fs: %d iterations, %d interrupted, %d failed",
            summary.duration_sec,
            summary.iterations_completed,
            summary.iterations_interrupted,
            summary.iteration_errors,
        )
        return summary

    async def _supervise(self, scheduler: Scheduler) -> WorkloadSummary:
        try:
            result = await scheduler.execute()
        except Exception:
            self.stop(StopReason.SCENARIO_ABORT, f"workload {scheduler.name} crashed")
            raise
        self._finished.append(result)
        return result

    async def _watch_thresholds(self, started: float) -> None:
        abortable = [t for t in self._config.thresholds if t.abort_on_fail]
        if not abortable:
            return
        while True:
            await asyncio.sleep(self._config.threshold_check_interval_sec)
            elapsed = time.perf_counter() - started
            due = [t for t in abortable if elapsed >= t.delay_abort_eval_sec]
            failed = _first_live_failure(self._metrics.snapshot(), due, elapsed)
            if failed is not None:
                self.stop(StopReason.THRESHOLD, failed.describe())
                return


def _first_live_failure(snapshot: StoreSnapshot, due: list[Threshold], elapsed: float) -> Threshold | None:
    for result in evaluate_snapshot(snapshot, due, elapsed):
        if result.passed or result.failure is ThresholdFailure.METRIC_MISSING:
            continue
        # Metrics without samples yet are not a reason to abort.
        if not _has_samples(snapshot[result.threshold.metric]):
            continue
        return result.threshold
    return None


def _has_samples(snapshot: MetricSnapshot) -> bool:
    if isinstance(snapshot, RateSnapshot):
        return snapshot.total > 0
    return snapshot.count > 0


def _bind(workload: ScenarioConfig, default: ScenarioFn, exec_fns: Mapping[str, ScenarioFn]) -> ScenarioFn:
    if workload.exec_name is None:
        return default
    try:
        return exec_fns[workload.exec_name]
    except KeyError:
        msg = f"Scenario {workload.name!r} execs unknown function {workload.exec_name!r}; known: {sorted(exec_fns)}"
        raise ConfigError(msg) from None


async def run_test(
    config: RunConfig,
    scenario: ScenarioFn,
    transport: httpx.AsyncBaseTransport | None = None,
    metrics: MetricStore | None = None,
    handle_signals: bool = False,
    exec_fns: Mapping[str, ScenarioFn] | None = None,
) -> RunSummary:
    """Run ``scenario`` under ``config`` and return the frozen summary.

    Workloads naming an ``exec`` function are looked up in ``exec_fns``.
    With ``handle_signals`` an interrupt stops the run gracefully instead of
    cancelling it, so a summary is still produced.
    """
    metrics = metrics or MetricStore()
    capacity = max(10, sum(workload.profile.max_vus for workload in config.workloads()))
    limits = httpx.Limits(max_connections=capacity, max_keepalive_connections=capacity)
    async with httpx.AsyncClient(transport=transport, limits=limits, follow_redirects=True) as client:
        http = HttpClient(client, metrics, config.http)
        load_run = LoadRun(config, scenario, http, metrics, exec_fns)
        if not handle_signals or sys.platform == "win32":
            return await load_run.execute()
        loop = asyncio.get_running_loop()
        loop.add_signal_handler(signal.SIGINT, load_run.stop, StopReason.OPERATOR, "interrupted")
        try:
            return await load_run.execute()
        finally:
            loop.remove_signal_handler(signal.SIGINT)


def run(
    config: RunConfig,
    scenario: ScenarioFn,
    transport: httpx.AsyncBaseTransport | None = None,
    exec_fns: Mapping[str, ScenarioFn] | None = None,
) -> RunSummary:
    return asyncio.run(run_test(config, scenario, transport, exec_fns=exec_fns))


def exit_code_for(summary: RunSummary, results: Iterable[ThresholdResult]) -> ExitCode:
    if summary.stop_reason is StopReason.THRESHOLD:
        return ExitCode.THRESHOLD_ABORT
    if summary.stop_reason in (StopReason.SCENARIO_ERRORS, StopReason.SCENARIO_ABORT):
        return ExitCode.SCENARIO_ABORT
    if not all(result.passed for result in results):
        return ExitCode.THRESHOLDS_FAILED
    return ExitCode.OK
