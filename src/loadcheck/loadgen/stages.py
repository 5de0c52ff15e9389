from __future__ import annotations

from dataclasses import dataclass

from loadcheck.config import Injection, InjectionKind, RunConfig, Stage


@dataclass(frozen=True, slots=True)
class VuSchedule:
    """Active VU target over time, linearly interpolated between stages."""

    start_vus: int
    stages: tuple[Stage, ...] = ()

    def duration_sec(self) -> float:
        return sum(stage.duration_sec for stage in self.stages)

    def target_at(self, t_sec: float) -> int:
        previous = self.start_vus
        elapsed = 0.0
        if t_sec < 0:
            return previous
        for stage in self.stages:
            end = elapsed + stage.duration_sec
            if t_sec < end:
                progress = (t_sec - elapsed) / stage.duration_sec
                return int(round(previous + (stage.target - previous) * progress))
            elapsed = end
            previous = stage.target
        return previous


def schedule_for(config: RunConfig) -> VuSchedule:
    if config.stages:
        return VuSchedule(start_vus=config.start_vus, stages=config.stages)
    return VuSchedule(start_vus=config.vus)


def arrival_offsets(steps: tuple[Injection, ...]) -> list[float]:
    """Seconds after workload start at which each open-model user arrives.

    Users of a step are spread evenly across it, so ``rampUsers(4)`` over
    ``2s`` arrives at 0.0, 0.5, 1.0 and 1.5.
    """
    offsets: list[float] = []
    cursor = 0.0
    for step in steps:
        count = step.arrivals
        if step.kind is InjectionKind.AT_ONCE:
            offsets.extend([cursor] * count)
        elif count:
            interval = step.span_sec / count
            offsets.extend(cursor + idx * interval for idx in range(count))
        cursor += step.span_sec
    return offsets
