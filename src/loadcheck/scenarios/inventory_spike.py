"""Flash-sale spike on the inventory service.

Two workloads run side by side after a calm start: stock checks (80% of
arrivals) and reservations (20%), where a 409 out-of-stock answer counts
as a normal outcome.
"""

from __future__ import annotations

import uuid
from typing import Any

from loadcheck.loadgen.context import RunContext
from loadcheck.scenarios.base import Scenario

DEFAULT_BASE_URL = "http://localhost:8080"
# small product range so caches get hit
PRODUCT_RANGE = 100

OPTIONS: dict[str, Any] = {
    "scenarios": {
        "inventory_check": {
            "exec": "check_stock",
            "injection": [
                {"nothingFor": "5s"},
                {"atOnceUsers": 160},
                {"rampUsers": 40, "during": "10s"},
            ],
        },
        "inventory_reserve": {
            "exec": "reserve_stock",
            "injection": [
                {"nothingFor": "5s"},
                {"atOnceUsers": 40},
                {"rampUsers": 10, "during": "10s"},
            ],
        },
    },
    "thresholds": {
        "http_req_duration": ["p(95)<100"],
        "http_req_failed": ["rate<0.05"],
    },
    "http": {
        "headers": {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": "loadcheck spike test",
        },
    },
}


async def check_stock(ctx: RunContext) -> None:
    base_url = ctx.env.get("BASE_URL") or DEFAULT_BASE_URL
    product_id = f"PROD-{ctx.random.randrange(PRODUCT_RANGE)}"
    resp = await ctx.http.get(
        f"{base_url}/api/v1/inventory/{product_id}",
        headers={"Correlation-Id": str(uuid.uuid4())},
    )
    ctx.check(resp, {"check stock status is 200": lambda r: r.status == 200})
    await ctx.sleep(0.1, 0.5)


async def reserve_stock(ctx: RunContext) -> None:
    base_url = ctx.env.get("BASE_URL") or DEFAULT_BASE_URL
    resp = await ctx.http.post(
        f"{base_url}/api/v1/inventory/reserve",
        headers={"Correlation-Id": str(uuid.uuid4())},
        json={"productId": f"PROD-{ctx.random.randrange(PRODUCT_RANGE)}", "quantity": ctx.random.randint(1, 4)},
        expected_statuses=(200, 201, 409),
    )
    ctx.check(resp, {"reserve stock answered": lambda r: r.status in (200, 201, 409)})
    await ctx.sleep(0.2, 0.8)


INVENTORY_SPIKE = Scenario(
    name="inventory_spike",
    fn=check_stock,
    options=OPTIONS,
    description="Spike of stock checks and reservations after a calm start",
    exec_fns={"check_stock": check_stock, "reserve_stock": reserve_stock},
)
