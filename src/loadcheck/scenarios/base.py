from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from loadcheck.loadgen.context import ScenarioFn


@dataclass(frozen=True, slots=True)
class Scenario:
    """A named iteration body plus the default options it is meant to run with.

    ``exec_fns`` holds the functions that workloads in ``options["scenarios"]``
    may name through ``exec``.
    """

    name: str
    fn: ScenarioFn
    options: Mapping[str, Any] = field(default_factory=dict)
    description: str = ""
    exec_fns: Mapping[str, ScenarioFn] = field(default_factory=dict)
