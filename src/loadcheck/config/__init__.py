from __future__ import annotations

from loadcheck.config.loader import (
    apply_options,
    load_options_file,
    options_to_fields,
    parse_duration,
    parse_env,
    parse_injection,
    parse_key_values,
    parse_stage,
    parse_threshold_arg,
    parse_thresholds,
)
from loadcheck.config.models import (
    HttpConfig,
    Injection,
    InjectionKind,
    RunConfig,
    ScenarioConfig,
    Stage,
    StopMode,
)

__all__ = [
    "HttpConfig",
    "Injection",
    "InjectionKind",
    "RunConfig",
    "ScenarioConfig",
    "Stage",
    "StopMode",
    "apply_options",
    "load_options_file",
    "options_to_fields",
    "parse_duration",
    "parse_env",
    "parse_injection",
    "parse_key_values",
    "parse_stage",
    "parse_threshold_arg",
    "parse_thresholds",
]
