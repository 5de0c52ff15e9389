from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

from loadcheck.errors import ConfigError
from loadcheck.thresholds import Threshold


class StopMode(str, Enum):
    DURATION = "duration"
    ITERATIONS = "iterations"
    DURATION_OR_ITERATIONS = "duration_or_iterations"
    ARRIVALS = "arrivals"


class InjectionKind(str, Enum):
    NOTHING_FOR = "nothingFor"
    AT_ONCE = "atOnceUsers"
    RAMP = "rampUsers"
    CONSTANT_RATE = "constantUsersPerSec"


@dataclass(frozen=True, slots=True)
class HttpConfig:
    base_url: str = ""
    timeout_sec: float = 60.0
    headers: Mapping[str, str] = field(default_factory=dict)
    throw: bool = False

    def __post_init__(self) -> None:
        if self.timeout_sec <= 0:
            msg = f"timeout_sec must be positive, got {self.timeout_sec}"
            raise ConfigError(msg)


@dataclass(frozen=True, slots=True)
class Stage:
    duration_sec: float
    target: int

    def __post_init__(self) -> None:
        if self.duration_sec < 0:
            msg = f"Stage duration must be >= 0, got {self.duration_sec}"
            raise ConfigError(msg)
        if self.target < 0:
            msg = f"Stage target must be >= 0, got {self.target}"
            raise ConfigError(msg)


@dataclass(frozen=True, slots=True)
class Injection:
    """One open-model step: users arrive on a timetable and run one iteration each."""

    kind: InjectionKind
    users: int = 0
    duration_sec: float = 0.0
    rate: float = 0.0

    def __post_init__(self) -> None:
        if self.users < 0 or self.duration_sec < 0 or self.rate < 0:
            msg = f"Injection values must be >= 0: {self}"
            raise ConfigError(msg)
        if self.kind is InjectionKind.NOTHING_FOR and self.duration_sec <= 0:
            msg = "nothingFor needs a positive duration"
            raise ConfigError(msg)
        if self.kind in (InjectionKind.AT_ONCE, InjectionKind.RAMP) and self.users < 1:
            msg = f"{self.kind.value} needs at least one user"
            raise ConfigError(msg)
        if self.kind is InjectionKind.RAMP and self.duration_sec <= 0:
            msg = "rampUsers needs a positive duration"
            raise ConfigError(msg)
        if self.kind is InjectionKind.CONSTANT_RATE and (self.rate <= 0 or self.duration_sec <= 0):
            msg = "constantUsersPerSec needs a positive rate and duration"
            raise ConfigError(msg)

    @property
    def arrivals(self) -> int:
        if self.kind is InjectionKind.CONSTANT_RATE:
            return int(round(self.rate * self.duration_sec))
        if self.kind is InjectionKind.NOTHING_FOR:
            return 0
        return self.users

    @property
    def span_sec(self) -> float:
        return 0.0 if self.kind is InjectionKind.AT_ONCE else self.duration_sec


@dataclass(frozen=True, slots=True)
class ScenarioConfig:
    """A named workload running concurrently with the others in one test."""

    name: str
    profile: RunConfig
    exec_name: str | None = None


@dataclass(frozen=True, slots=True)
class RunConfig:
    vus: int = 1
    duration_sec: float | None = None
    iterations: int | None = None
    stages: tuple[Stage, ...] = ()
    start_vus: int = 0
    injection: tuple[Injection, ...] = ()
    start_time_sec: float = 0.0
    scenarios: tuple[ScenarioConfig, ...] = ()
    thresholds: tuple[Threshold, ...] = ()
    env: Mapping[str, str] = field(default_factory=dict)
    http: HttpConfig = field(default_factory=HttpConfig)
    graceful_stop_sec: float = 30.0
    graceful_ramp_down_sec: float = 30.0
    stagger_sec: float = 0.0
    max_iteration_errors: int | None = None
    threshold_check_interval_sec: float = 2.0
    seed: int | None = None
    summary_path: Path | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        if self.vus < 1 and not self.stages and not self.injection:
            msg = f"vus must be >= 1, got {self.vus}"
            raise ConfigError(msg)
        if self.duration_sec is not None and self.duration_sec <= 0:
            msg = f"duration_sec must be positive, got {self.duration_sec}"
            raise ConfigError(msg)
        if self.iterations is not None and self.iterations < 1:
            msg = f"iterations must be >= 1, got {self.iterations}"
            raise ConfigError(msg)
        if self.stages and self.iterations is not None:
            msg = "stages cannot be combined with an iteration cap"
            raise ConfigError(msg)
        if self.stages and sum(stage.duration_sec for stage in self.stages) <= 0:
            msg = "stages must add up to a positive duration"
            raise ConfigError(msg)
        if self.injection and (self.stages or self.iterations is not None):
            msg = "injection cannot be combined with stages or an iteration cap"
            raise ConfigError(msg)
        if self.injection and sum(step.arrivals for step in self.injection) < 1:
            msg = "injection must bring at least one user"
            raise ConfigError(msg)
        if self.start_vus < 0:
            msg = f"start_vus must be >= 0, got {self.start_vus}"
            raise ConfigError(msg)
        has_stop = self.stages or self.injection or self.duration_sec is not None or self.iterations is not None
        if not has_stop and not self.scenarios:
            msg = "one of duration_sec, iterations, stages or injection is required"
            raise ConfigError(msg)
        for name in ("graceful_stop_sec", "graceful_ramp_down_sec", "stagger_sec", "start_time_sec"):
            if getattr(self, name) < 0:
                msg = f"{name} must be >= 0, got {getattr(self, name)}"
                raise ConfigError(msg)
        if self.threshold_check_interval_sec <= 0:
            msg = f"threshold_check_interval_sec must be positive, got {self.threshold_check_interval_sec}"
            raise ConfigError(msg)
        if self.max_iteration_errors is not None and self.max_iteration_errors < 0:
            msg = f"max_iteration_errors must be >= 0, got {self.max_iteration_errors}"
            raise ConfigError(msg)
        names = [scenario.name for scenario in self.scenarios]
        if len(names) != len(set(names)):
            msg = f"scenario names must be unique, got {names}"
            raise ConfigError(msg)

    @property
    def stop_mode(self) -> StopMode:
        if self.injection:
            return StopMode.ARRIVALS
        duration = self.total_duration_sec()
        if duration is not None and self.iterations is not None:
            return StopMode.DURATION_OR_ITERATIONS
        if duration is not None:
            return StopMode.DURATION
        return StopMode.ITERATIONS

    @property
    def max_vus(self) -> int:
        """Upper bound on concurrently active VUs for this load profile."""
        if self.injection:
            return sum(step.arrivals for step in self.injection)
        if self.stages:
            return max([self.start_vus, *(stage.target for stage in self.stages)])
        return self.vus

    def total_duration_sec(self) -> float | None:
        if self.stages:
            return sum(stage.duration_sec for stage in self.stages)
        return self.duration_sec

    def workloads(self) -> tuple[ScenarioConfig, ...]:
        if self.scenarios:
            return self.scenarios
        return (ScenarioConfig(name="default", profile=self),)

    def to_metadata(self) -> Mapping[str, Any]:
        thresholds: dict[str, list[str]] = {}
        for threshold in self.thresholds:
            thresholds.setdefault(threshold.metric, []).append(threshold.expression)
        return {
            "created_at": self.created_at.isoformat(),
            "thresholds": thresholds,
            "seed": self.seed,
            "http": {
                "base_url": self.http.base_url,
                "timeout_sec": self.http.timeout_sec,
                "headers": dict(self.http.headers),
                "throw": self.http.throw,
            },
            "scenarios": {workload.name: _profile_metadata(workload) for workload in self.workloads()},
        }


def _profile_metadata(workload: ScenarioConfig) -> dict[str, Any]:
    profile = workload.profile
    return {
        "exec": workload.exec_name,
        "vus": profile.vus,
        "max_vus": profile.max_vus,
        "duration_sec": profile.total_duration_sec(),
        "iterations": profile.iterations,
        "stop_mode": profile.stop_mode.value,
        "start_time_sec": profile.start_time_sec,
        "stages": [{"duration_sec": stage.duration_sec, "target": stage.target} for stage in profile.stages],
        "injection": [
            {"kind": step.kind.value, "users": step.users, "duration_sec": step.duration_sec, "rate": step.rate}
            for step in profile.injection
        ],
        "graceful_stop_sec": profile.graceful_stop_sec,
    }
