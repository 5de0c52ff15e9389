from __future__ import annotations

import importlib
import inspect
from types import ModuleType
from typing import Any, Mapping

from loadcheck.errors import ConfigError
from loadcheck.loadgen.context import ScenarioFn
from loadcheck.scenarios.base import Scenario
from loadcheck.scenarios.inventory_spike import INVENTORY_SPIKE
from loadcheck.scenarios.order_flow import ORDER_FLOW
from loadcheck.scenarios.smoke import SMOKE

BUILTIN: dict[str, Scenario] = {scenario.name: scenario for scenario in (SMOKE, ORDER_FLOW, INVENTORY_SPIKE)}


def resolve_scenario(ref: str) -> Scenario:
    """Look up a built-in scenario by name or import ``package.module:attribute``."""
    if ref in BUILTIN:
        return BUILTIN[ref]
    module_name, sep, attr = ref.partition(":")
    if not sep or not module_name or not attr:
        msg = f"Unknown scenario {ref!r}; use one of {sorted(BUILTIN)} or module:attribute"
        raise ConfigError(msg)
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        msg = f"Cannot import scenario module {module_name!r}: {exc}"
        raise ConfigError(msg) from exc
    try:
        target = getattr(module, attr)
    except AttributeError as exc:
        msg = f"Module {module_name!r} has no attribute {attr!r}"
        raise ConfigError(msg) from exc
    if isinstance(target, Scenario):
        return target
    if inspect.iscoroutinefunction(target):
        options = getattr(module, "OPTIONS", {})
        return Scenario(name=attr, fn=target, options=options, exec_fns=_exec_fns(module, options))
    msg = f"{ref!r} is neither a Scenario nor an async function"
    raise ConfigError(msg)


def _exec_fns(module: ModuleType, options: Mapping[str, Any]) -> dict[str, ScenarioFn]:
    """Module-level coroutine functions named by ``exec`` in the options' scenarios."""
    found: dict[str, ScenarioFn] = {}
    scenarios = options.get("scenarios") if isinstance(options, Mapping) else None
    if not isinstance(scenarios, Mapping):
        return found
    for entry in scenarios.values():
        name = entry.get("exec") if isinstance(entry, Mapping) else None
        if not isinstance(name, str):
            continue
        fn = getattr(module, name, None)
        if not inspect.iscoroutinefunction(fn):
            msg = f"Module {module.__name__!r} has no async function {name!r} to exec"
            raise ConfigError(msg)
        found[name] = fn
    return found
