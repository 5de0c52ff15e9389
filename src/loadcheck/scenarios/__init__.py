from __future__ import annotations

from loadcheck.scenarios.base import Scenario
from loadcheck.scenarios.inventory_spike import INVENTORY_SPIKE
from loadcheck.scenarios.order_flow import ORDER_FLOW
from loadcheck.scenarios.registry import BUILTIN, resolve_scenario
from loadcheck.scenarios.smoke import SMOKE

__all__ = ["BUILTIN", "INVENTORY_SPIKE", "ORDER_FLOW", "SMOKE", "Scenario", "resolve_scenario"]
