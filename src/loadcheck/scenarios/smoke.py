"""API smoke sequence: health, product list, product detail, inventory.

Quick validation of the critical endpoints, meant for CI regression runs::

    loadcheck run --scenario smoke --env BASE_URL=http://localhost:8080
"""

from __future__ import annotations

import uuid
from typing import Any

from loadcheck.loadgen.client import Response
from loadcheck.loadgen.context import RunContext
from loadcheck.scenarios.base import Scenario

DEFAULT_BASE_URL = "http://localhost:8080"
PRODUCT_ID = "PROD-1"

OPTIONS: dict[str, Any] = {
    "vus": 10,
    "duration": "30s",
    "thresholds": {
        "http_req_duration": ["p(95)<200"],
        "errors": ["rate<0.1"],
    },
    "summaryExport": "reports/summary.json",
}


def _has_product_fields(resp: Response) -> bool:
    body = resp.json()
    return bool(body.get("productId") and body.get("name") and body.get("price"))


async def api_smoke(ctx: RunContext) -> None:
    base_url = ctx.env.get("BASE_URL") or DEFAULT_BASE_URL
    headers = {
        "Content-Type": "application/json",
        "Correlation-Id": str(uuid.uuid4()),
    }
    errors = ctx.rate("errors")

    resp = await ctx.http.get(f"{base_url}/actuator/health", headers=headers)
    ok = ctx.check(resp, {"health check status is 200": lambda r: r.status == 200})
    errors.add(not ok)
    await ctx.sleep(0.5)

    resp = await ctx.http.get(f"{base_url}/api/v1/products", headers=headers, params={"page": 0, "size": 10})
    ok = ctx.check(
        resp,
        {
            "products list status is 200": lambda r: r.status == 200,
            "products response time < 100ms": lambda r: r.timings.duration < 100,
        },
    )
    errors.add(not ok)
    await ctx.sleep(0.5)

    resp = await ctx.http.get(f"{base_url}/api/v1/products/{PRODUCT_ID}", headers=headers)
    ok = ctx.check(
        resp,
        {
            "product detail status is 200": lambda r: r.status == 200,
            "product has required fields": _has_product_fields,
        },
    )
    errors.add(not ok)
    await ctx.sleep(0.5)

    resp = await ctx.http.get(f"{base_url}/api/v1/inventory/{PRODUCT_ID}", headers=headers)
    ok = ctx.check(resp, {"inventory check status is 200": lambda r: r.status == 200})
    errors.add(not ok)
    await ctx.sleep(1)


SMOKE = Scenario(
    name="smoke",
    fn=api_smoke,
    options=OPTIONS,
    description="Health, products, product detail and inventory checks",
)
