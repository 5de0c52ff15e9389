from __future__ import annotations

from hypothesis import given, strategies as st

from loadcheck.config import Injection, InjectionKind, RunConfig, Stage, parse_injection
from loadcheck.loadgen.stages import VuSchedule, arrival_offsets, schedule_for


def test_ramp_hold_and_ramp_down() -> None:
    schedule = VuSchedule(start_vus=0, stages=(Stage(4, 8), Stage(3, 8), Stage(4, 0)))
    ramp = [schedule.target_at(t) for t in range(5)]
    assert ramp == sorted(ramp)
    assert ramp[0] == 0
    assert all(schedule.target_at(t) == 8 for t in (4, 5, 6))
    down = [schedule.target_at(t) for t in range(7, 12)]
    assert down == sorted(down, reverse=True)
    assert schedule.target_at(11) == 0
    assert schedule.duration_sec() == 11


def test_zero_length_stage_jumps_immediately() -> None:
    schedule = VuSchedule(start_vus=1, stages=(Stage(0, 50), Stage(10, 50)))
    assert schedule.target_at(0) == 50


def test_constant_config_yields_flat_schedule() -> None:
    schedule = schedule_for(RunConfig(vus=7, duration_sec=30))
    assert schedule.target_at(0) == 7
    assert schedule.target_at(29.9) == 7


@given(
    start=st.integers(min_value=0, max_value=50),
    targets=st.lists(st.integers(min_value=0, max_value=200), min_size=1, max_size=5),
    t=st.floats(min_value=0, max_value=100),
)
def test_target_stays_within_stage_bounds(start: int, targets: list[int], t: float) -> None:
    stages = tuple(Stage(duration_sec=10, target=target) for target in targets)
    schedule = VuSchedule(start_vus=start, stages=stages)
    value = schedule.target_at(t)
    assert 0 <= value <= max([start, *targets])


def test_spike_injection_timetable() -> None:
    steps = parse_injection([{"nothingFor": "5s"}, {"atOnceUsers": 3}, {"rampUsers": 4, "during": "2s"}])
    assert arrival_offsets(steps) == [5.0, 5.0, 5.0, 5.0, 5.5, 6.0, 6.5]


def test_constant_rate_injection_spreads_users_evenly() -> None:
    steps = (Injection(InjectionKind.CONSTANT_RATE, rate=2, duration_sec=3),)
    assert arrival_offsets(steps) == [0.0, 0.5, 1.0, 1.5, 2.0, 2.5]


@given(
    users=st.lists(st.integers(min_value=1, max_value=50), min_size=1, max_size=4),
    span=st.floats(min_value=0.1, max_value=60),
)
def test_arrivals_are_ordered_and_complete(users: list[int], span: float) -> None:
    steps = tuple(Injection(InjectionKind.RAMP, users=n, duration_sec=span) for n in users)
    offsets = arrival_offsets(steps)
    assert len(offsets) == sum(users)
    assert offsets == sorted(offsets)
    assert offsets[-1] < span * len(users)
