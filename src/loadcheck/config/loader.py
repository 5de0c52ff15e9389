"""Turn human-friendly option values into ``RunConfig`` instances.

Options follow the k6 ``options`` shape so existing option files can be
reused::

    {
      "vus": 10,
      "duration": "30s",
      "thresholds": {
        "http_req_duration": ["p(95)<200"],
        "errors": [{"threshold": "rate<0.1", "abortOnFail": true}]
      }
    }

Snake-case spellings (``duration_sec``, ``graceful_stop``) are accepted too.

Several workloads can run side by side under ``scenarios``, each with its own
load shape, an optional ``exec`` function name and ``startTime``::

    {
      "scenarios": {
        "readers": {"exec": "check_stock", "injection": [{"atOnceUsers": 160}]},
        "writers": {"exec": "reserve_stock", "vus": 5, "duration": "1m", "startTime": "5s"}
      }
    }
"""

from __future__ import annotations

import dataclasses
import json
from pathlib import Path
from typing import Any, Iterable, Mapping

from loadcheck.config.models import HttpConfig, Injection, InjectionKind, RunConfig, ScenarioConfig, Stage
from loadcheck.errors import ConfigError
from loadcheck.thresholds import Threshold, parse_threshold


def parse_duration(value: Any) -> float:
    """Parse ``"500ms"``, ``"30s"``, ``"1m30s"``, ``"1h"`` or a bare number of seconds."""
    if isinstance(value, bool):
        msg = f"Invalid duration: {value!r}"
        raise ConfigError(msg)
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str) or not value.strip():
        msg = f"Invalid duration: {value!r}"
        raise ConfigError(msg)
    text = value.strip().lower()
    try:
        return float(text)
    except ValueError:
        pass
    total = 0.0
    number = ""
    idx = 0
    while idx < len(text):
        char = text[idx]
        if char.isdigit() or char == ".":
            number += char
            idx += 1
            continue
        if text.startswith("ms", idx):
            unit, factor = "ms", 0.001
        elif char in _UNITS:
            unit, factor = char, _UNITS[char]
        else:
            msg = f"Invalid duration: {value!r}"
            raise ConfigError(msg)
        if not number:
            msg = f"Invalid duration: {value!r}"
            raise ConfigError(msg)
        total += float(number) * factor
        number = ""
        idx += len(unit)
    if number:
        msg = f"Invalid duration (missing unit): {value!r}"
        raise ConfigError(msg)
    return total


_UNITS = {"s": 1.0, "m": 60.0, "h": 3600.0}


def parse_key_values(pairs: Iterable[str]) -> dict[str, str]:
    bindings: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            msg = f"Expected KEY=VALUE, got {pair!r}"
            raise ConfigError(msg)
        bindings[key] = value
    return bindings


def parse_env(raw: Any) -> dict[str, str]:
    return {str(k): str(v) for k, v in _as_mapping("env", raw).items()}


def parse_stage(text: str) -> Stage:
    """Parse ``DURATION:TARGET``, e.g. ``30s:10``."""
    duration, sep, target = text.rpartition(":")
    if not sep:
        msg = f"Expected DURATION:TARGET, got {text!r}"
        raise ConfigError(msg)
    try:
        vus = int(target)
    except ValueError as exc:
        msg = f"Invalid stage target in {text!r}"
        raise ConfigError(msg) from exc
    return Stage(duration_sec=parse_duration(duration), target=vus)


def parse_threshold_arg(text: str) -> Threshold:
    """Parse ``METRIC=EXPRESSION``, e.g. ``http_req_duration=p(95)<200``."""
    metric, sep, expression = text.partition("=")
    if not sep:
        msg = f"Expected METRIC=EXPRESSION, got {text!r}"
        raise ConfigError(msg)
    return parse_threshold(metric.strip(), expression)


def parse_thresholds(raw: Any) -> tuple[Threshold, ...]:
    thresholds: list[Threshold] = []
    for metric, entries in _as_mapping("thresholds", raw).items():
        if isinstance(entries, (str, Mapping)):
            entries = [entries]
        for entry in _as_list(f"thresholds.{metric}", entries):
            if isinstance(entry, str):
                thresholds.append(parse_threshold(metric, entry))
                continue
            if not isinstance(entry, Mapping) or not isinstance(entry.get("threshold"), str):
                msg = f"Invalid threshold entry for {metric}: {entry!r}"
                raise ConfigError(msg)
            delay = entry.get("delayAbortEval", entry.get("delay_abort_eval", 0))
            thresholds.append(
                parse_threshold(
                    metric,
                    entry["threshold"],
                    abort_on_fail=bool(entry.get("abortOnFail", entry.get("abort_on_fail", False))),
                    delay_abort_eval_sec=parse_duration(delay),
                )
            )
    return tuple(thresholds)


def parse_injection(raw: Any) -> tuple[Injection, ...]:
    """Parse Gatling-style open-model steps.

    ``[{"nothingFor": "5s"}, {"atOnceUsers": 160}, {"rampUsers": 40, "during": "10s"},
    {"constantUsersPerSec": 5, "during": "1m"}]``
    """
    steps: list[Injection] = []
    for entry in _as_list("injection", raw):
        entry = _as_mapping("injection step", entry)
        kinds = [kind for kind in InjectionKind if kind.value in entry]
        if len(kinds) != 1:
            msg = f"Injection step needs exactly one of {[k.value for k in InjectionKind]}: {entry!r}"
            raise ConfigError(msg)
        kind = kinds[0]
        value = entry[kind.value]
        during = entry.get("during")
        if kind is InjectionKind.NOTHING_FOR:
            steps.append(Injection(kind, duration_sec=parse_duration(value)))
        elif kind is InjectionKind.AT_ONCE:
            steps.append(Injection(kind, users=_as_int(kind.value, value)))
        elif kind is InjectionKind.RAMP:
            users = _as_int(kind.value, value)
            steps.append(Injection(kind, users=users, duration_sec=_required_duration(kind, during)))
        else:
            rate = _as_float(kind.value, value)
            steps.append(Injection(kind, rate=rate, duration_sec=_required_duration(kind, during)))
    return tuple(steps)


def _required_duration(kind: InjectionKind, during: Any) -> float:
    if during is None:
        msg = f"{kind.value} needs a 'during' duration"
        raise ConfigError(msg)
    return parse_duration(during)


def options_to_fields(options: Mapping[str, Any]) -> dict[str, Any]:
    """Map an options mapping onto ``RunConfig`` field values."""

    def pick(*names: str) -> Any:
        for name in names:
            if name in options and options[name] is not None:
                return options[name]
        return None

    fields: dict[str, Any] = {}
    vus = pick("vus")
    if vus is not None:
        fields["vus"] = _as_int("vus", vus)
    duration = pick("duration", "duration_sec")
    if duration is not None:
        fields["duration_sec"] = parse_duration(duration)
    iterations = pick("iterations")
    if iterations is not None:
        fields["iterations"] = _as_int("iterations", iterations)
    stages = pick("stages")
    if stages is not None:
        fields["stages"] = tuple(_stage_from(stage) for stage in _as_list("stages", stages))
    start_vus = pick("startVUs", "start_vus")
    if start_vus is not None:
        fields["start_vus"] = _as_int("startVUs", start_vus)
    injection = pick("injection")
    if injection is not None:
        fields["injection"] = parse_injection(injection)
    thresholds = pick("thresholds")
    if thresholds is not None:
        fields["thresholds"] = parse_thresholds(thresholds)
    env = pick("env")
    if env is not None:
        fields["env"] = parse_env(env)
    for name, keys in _DURATION_FIELDS.items():
        value = pick(*keys)
        if value is not None:
            fields[name] = parse_duration(value)
    max_errors = pick("maxIterationErrors", "max_iteration_errors")
    if max_errors is not None:
        fields["max_iteration_errors"] = _as_int("maxIterationErrors", max_errors)
    seed = pick("seed")
    if seed is not None:
        fields["seed"] = _as_int("seed", seed)
    summary = pick("summaryExport", "summary_path")
    if summary is not None:
        fields["summary_path"] = Path(str(summary))
    http = pick("http")
    if http is not None:
        fields["http"] = _http_from(_as_mapping("http", http))
    scenarios = pick("scenarios")
    if scenarios is not None:
        fields["scenarios"] = tuple(
            _scenario_from(str(name), raw) for name, raw in _as_mapping("scenarios", scenarios).items()
        )
    return fields


_DURATION_FIELDS = {
    "graceful_stop_sec": ("gracefulStop", "graceful_stop", "graceful_stop_sec"),
    "graceful_ramp_down_sec": ("gracefulRampDown", "graceful_ramp_down", "graceful_ramp_down_sec"),
    "stagger_sec": ("stagger", "stagger_sec"),
    "start_time_sec": ("startTime", "start_time", "start_time_sec"),
    "threshold_check_interval_sec": ("thresholdCheckInterval", "threshold_check_interval_sec"),
}

_LOAD_SHAPE = ("vus", "duration_sec", "iterations", "stages", "injection")

# Keys that only make sense once per test, not per scenario.
_RUN_ONLY = ("thresholds", "scenarios", "summaryExport", "summary_path", "http", "seed")


def apply_options(config: RunConfig, *layers: Mapping[str, Any]) -> RunConfig:
    """Return ``config`` with each options layer applied in order, later layers winning."""
    fields: dict[str, Any] = {}
    for layer in layers:
        fields.update(_layer_fields(layer))
    if not fields:
        return config
    try:
        return dataclasses.replace(config, **fields)
    except TypeError as exc:
        msg = f"Invalid options: {exc}"
        raise ConfigError(msg) from exc


def _layer_fields(layer: Mapping[str, Any]) -> dict[str, Any]:
    fields = options_to_fields(_as_mapping("options", layer))
    # a layer choosing a stop mode replaces the ones it does not mention
    if ("stages" in fields or "duration_sec" in fields or "injection" in fields) and "iterations" not in fields:
        fields["iterations"] = None
    if ("iterations" in fields or "injection" in fields) and "stages" not in fields:
        fields["stages"] = ()
    if any(name in fields for name in ("vus", "duration_sec", "iterations", "stages")) and "injection" not in fields:
        fields["injection"] = ()
    # an explicit load shape overrides the scenario set, like k6 CLI shortcuts
    if any(name in fields for name in _LOAD_SHAPE) and "scenarios" not in fields:
        fields["scenarios"] = ()
    return fields


def load_options_file(path: Path) -> dict[str, Any]:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        msg = f"Options file not found: {path}"
        raise ConfigError(msg) from exc
    except json.JSONDecodeError as exc:
        msg = f"Options file {path} is not valid JSON: {exc}"
        raise ConfigError(msg) from exc
    if not isinstance(raw, dict):
        msg = f"Options file {path} must contain a JSON object"
        raise ConfigError(msg)
    return raw


def _scenario_from(name: str, raw: Any) -> ScenarioConfig:
    raw = _as_mapping(f"scenarios.{name}", raw)
    misplaced = [key for key in _RUN_ONLY if key in raw]
    if misplaced:
        msg = f"Scenario {name!r} cannot set {misplaced}; they apply to the whole test"
        raise ConfigError(msg)
    exec_name = raw.get("exec")
    if exec_name is not None and not isinstance(exec_name, str):
        msg = f"Scenario {name!r} exec must be a function name, got {exec_name!r}"
        raise ConfigError(msg)
    profile_options = {key: value for key, value in raw.items() if key != "exec"}
    if not any(key in options_to_fields(profile_options) for key in _LOAD_SHAPE):
        msg = f"Scenario {name!r} needs one of vus/duration/iterations/stages/injection"
        raise ConfigError(msg)
    profile = apply_options(RunConfig(vus=1, iterations=1), profile_options)
    return ScenarioConfig(name=name, profile=profile, exec_name=exec_name)


def _stage_from(raw: Any) -> Stage:
    if isinstance(raw, str):
        return parse_stage(raw)
    if isinstance(raw, Mapping) and "duration" in raw and "target" in raw:
        return Stage(duration_sec=parse_duration(raw["duration"]), target=_as_int("stage target", raw["target"]))
    msg = f"Invalid stage: {raw!r}"
    raise ConfigError(msg)


def _http_from(raw: Mapping[str, Any]) -> HttpConfig:
    defaults = HttpConfig()
    timeout = raw.get("timeout", raw.get("timeout_sec"))
    headers = _as_mapping("http.headers", raw.get("headers", {}))
    return HttpConfig(
        base_url=str(raw.get("baseUrl", raw.get("base_url", defaults.base_url))),
        timeout_sec=parse_duration(timeout) if timeout is not None else defaults.timeout_sec,
        headers={str(k): str(v) for k, v in headers.items()},
        throw=bool(raw.get("throw", defaults.throw)),
    )


def _as_int(name: str, value: Any) -> int:
    if isinstance(value, bool):
        msg = f"{name} must be an integer, got {value!r}"
        raise ConfigError(msg)
    if isinstance(value, float) and not value.is_integer():
        msg = f"{name} must be an integer, got {value!r}"
        raise ConfigError(msg)
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        msg = f"{name} must be an integer, got {value!r}"
        raise ConfigError(msg) from exc


def _as_float(name: str, value: Any) -> float:
    if isinstance(value, bool):
        msg = f"{name} must be a number, got {value!r}"
        raise ConfigError(msg)
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        msg = f"{name} must be a number, got {value!r}"
        raise ConfigError(msg) from exc


def _as_mapping(name: str, value: Any) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        msg = f"{name} must be an object, got {value!r}"
        raise ConfigError(msg)
    return value


def _as_list(name: str, value: Any) -> list[Any]:
    if isinstance(value, (str, bytes, Mapping)) or not isinstance(value, Iterable):
        msg = f"{name} must be a list, got {value!r}"
        raise ConfigError(msg)
    return list(value)
