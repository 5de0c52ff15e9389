from __future__ import annotations

import json
from pathlib import Path

import pytest

from loadcheck.cli import _parser, build_config
from loadcheck.config import (
    InjectionKind,
    RunConfig,
    Stage,
    StopMode,
    apply_options,
    load_options_file,
    parse_duration,
    parse_injection,
    parse_key_values,
    parse_stage,
    parse_thresholds,
)
from loadcheck.errors import ConfigError
from loadcheck.scenarios import INVENTORY_SPIKE, ORDER_FLOW, SMOKE


@pytest.mark.parametrize(
    ("value", "seconds"),
    [("500ms", 0.5), ("30s", 30.0), ("1m30s", 90.0), ("2h", 7200.0), ("10", 10.0), (5, 5.0), (1.5, 1.5)],
)
def test_parse_duration(value: object, seconds: float) -> None:
    assert parse_duration(value) == pytest.approx(seconds)


@pytest.mark.parametrize("value", ["", "abc", "10x", "s", "5m3", True])
def test_parse_duration_rejects_garbage(value: object) -> None:
    with pytest.raises(ConfigError):
        parse_duration(value)


def test_parse_stage_and_key_values() -> None:
    assert parse_stage("1m:20") == Stage(duration_sec=60.0, target=20)
    assert parse_key_values(["BASE_URL=http://x:8080/?a=b", "EMPTY="]) == {
        "BASE_URL": "http://x:8080/?a=b",
        "EMPTY": "",
    }
    with pytest.raises(ConfigError):
        parse_key_values(["novalue"])


def test_parse_thresholds_supports_k6_entry_shapes() -> None:
    thresholds = parse_thresholds(
        {
            "http_req_duration": ["p(95)<200", "p(99)<500"],
            "errors": [{"threshold": "rate<0.1", "abortOnFail": True, "delayAbortEval": "10s"}],
            "checks": "rate>0.9",
        }
    )
    assert [t.expression for t in thresholds] == ["p(95)<200", "p(99)<500", "rate<0.1", "rate>0.9"]
    errors = thresholds[2]
    assert errors.abort_on_fail
    assert errors.delay_abort_eval_sec == 10.0


def test_apply_options_duration_replaces_default_iteration_cap() -> None:
    config = apply_options(RunConfig(vus=1, iterations=1), {"vus": 10, "duration": "30s"})
    assert config.vus == 10
    assert config.duration_sec == 30.0
    assert config.iterations is None
    assert config.stop_mode is StopMode.DURATION


def test_apply_options_later_layers_win() -> None:
    config = apply_options(
        RunConfig(vus=1, iterations=1),
        {"vus": 10, "duration": "30s"},
        {"iterations": 5},
    )
    assert config.stop_mode is StopMode.DURATION_OR_ITERATIONS
    assert config.iterations == 5


def test_stages_define_total_duration() -> None:
    config = apply_options(RunConfig(vus=1, iterations=1), {"stages": [{"duration": "10s", "target": 5}, "20s:0"]})
    assert config.total_duration_sec() == 30.0
    assert config.max_vus == 5
    assert config.iterations is None


def test_later_iterations_layer_replaces_earlier_stages() -> None:
    config = apply_options(
        RunConfig(vus=1, iterations=1),
        {"stages": ["10s:5"]},
        {"vus": 2, "iterations": 4},
    )
    assert config.stages == ()
    assert config.stop_mode is StopMode.ITERATIONS


@pytest.mark.parametrize(
    "kwargs",
    [
        {"vus": 0, "iterations": 1},
        {"vus": 1},
        {"vus": 1, "duration_sec": -1},
        {"vus": 1, "iterations": 0},
        {"stages": (Stage(1, 1),), "iterations": 3},
        {"vus": 1, "iterations": 1, "graceful_stop_sec": -1},
    ],
)
def test_run_config_validation(kwargs: dict[str, object]) -> None:
    with pytest.raises(ConfigError):
        RunConfig(**kwargs)


def test_load_options_file(tmp_path: Path) -> None:
    path = tmp_path / "options.json"
    path.write_text(json.dumps({"vus": 3, "duration": "1s"}), encoding="utf-8")
    assert load_options_file(path) == {"vus": 3, "duration": "1s"}
    with pytest.raises(ConfigError):
        load_options_file(tmp_path / "missing.json")


def test_cli_flags_override_scenario_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FROM_PROCESS", "yes")
    args = _parser().parse_args(
        [
            "run",
            "--vus",
            "2",
            "--duration",
            "1s",
            "-e",
            "BASE_URL=http://shop.test",
            "--threshold",
            "http_req_duration=p(99)<300",
        ]
    )
    config = build_config(args, SMOKE)
    assert config.vus == 2
    assert config.duration_sec == 1.0
    assert config.env["BASE_URL"] == "http://shop.test"
    assert config.env["FROM_PROCESS"] == "yes"
    assert [t.expression for t in config.thresholds] == ["p(99)<300"]
    assert config.summary_path == Path("reports/summary.json")


@pytest.mark.parametrize(
    "options",
    [
        {"vus": "ten", "duration": "1s"},
        {"vus": 2, "iterations": [3]},
        {"vus": 2, "duration": "1s", "maxIterationErrors": "a few"},
        {"vus": 2, "duration": "1s", "stages": "30s:10"},
        {"vus": 2, "duration": "1s", "thresholds": ["p(95)<200"]},
        {"vus": 2, "duration": "1s", "thresholds": {"errors": [{"threshold": 0.1}]}},
        {"vus": 2, "duration": "1s", "http": "http://svc.test"},
        {"vus": 2, "duration": "1s", "env": ["BASE_URL"]},
    ],
)
def test_wrongly_typed_options_are_config_errors(options: dict[str, object]) -> None:
    with pytest.raises(ConfigError):
        apply_options(RunConfig(vus=1, iterations=1), options)


@pytest.mark.parametrize(
    "scenarios",
    [
        {"browse": {"exec": "browse"}},
        {"browse": {"vus": 1, "iterations": 1, "thresholds": {"errors": ["rate<0.1"]}}},
        {"browse": {"vus": 1, "iterations": 1, "exec": 42}},
        {"browse": "vus=1"},
    ],
)
def test_invalid_scenario_entries_are_rejected(scenarios: dict[str, object]) -> None:
    with pytest.raises(ConfigError):
        apply_options(RunConfig(vus=1, iterations=1), {"scenarios": scenarios})


def test_scenarios_carry_their_own_profiles() -> None:
    config = apply_options(
        RunConfig(vus=1, iterations=1),
        {
            "scenarios": {
                "browse": {"vus": 5, "duration": "30s"},
                "buy": {"exec": "buy", "iterations": 10, "vus": 2, "startTime": "10s", "env": {"FLOW": "buy"}},
            },
            "seed": 3,
        },
    )
    browse, buy = config.workloads()
    assert browse.exec_name is None
    assert browse.profile.stop_mode is StopMode.DURATION
    assert buy.exec_name == "buy"
    assert buy.profile.start_time_sec == 10.0
    assert buy.profile.env == {"FLOW": "buy"}
    assert config.seed == 3
    assert set(config.to_metadata()["scenarios"]) == {"browse", "buy"}


def test_load_shape_layer_replaces_scenarios() -> None:
    config = apply_options(RunConfig(vus=1, iterations=1), INVENTORY_SPIKE.options, {"vus": 2, "iterations": 4})
    assert config.scenarios == ()
    assert [w.name for w in config.workloads()] == ["default"]
    assert config.max_vus == 2


def test_parse_injection_steps() -> None:
    steps = parse_injection(
        [{"nothingFor": "5s"}, {"atOnceUsers": 10}, {"constantUsersPerSec": 2, "during": "30s"}]
    )
    assert [step.kind for step in steps] == [
        InjectionKind.NOTHING_FOR,
        InjectionKind.AT_ONCE,
        InjectionKind.CONSTANT_RATE,
    ]
    assert sum(step.arrivals for step in steps) == 70
    with pytest.raises(ConfigError):
        parse_injection([{"rampUsers": 5}])
    with pytest.raises(ConfigError):
        parse_injection([{"atOnceUsers": 1, "rampUsers": 2, "during": "1s"}])


def test_injection_replaces_iteration_cap_and_reports_arrivals_mode() -> None:
    config = apply_options(RunConfig(vus=1, iterations=1), ORDER_FLOW.options)
    assert config.iterations is None
    assert config.stop_mode is StopMode.ARRIVALS
    assert config.max_vus == 100
    assert config.total_duration_sec() is None


def test_spike_builtin_defines_two_open_workloads() -> None:
    config = apply_options(RunConfig(vus=1, iterations=1), INVENTORY_SPIKE.options)
    workloads = {w.name: w for w in config.workloads()}
    assert workloads["inventory_check"].exec_name == "check_stock"
    assert workloads["inventory_check"].profile.max_vus == 200
    assert workloads["inventory_reserve"].profile.max_vus == 50
    assert set(INVENTORY_SPIKE.exec_fns) == {"check_stock", "reserve_stock"}
