from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from random import Random
from typing import Any, Mapping

import httpx
import pytest
from hypothesis import given, strategies as st

from loadcheck.config import RunConfig, apply_options
from loadcheck.loadgen.client import HttpClient
from loadcheck.loadgen.context import RunContext, ScenarioFn
from loadcheck.loadgen.runner import StopReason, run
from loadcheck.metrics import MetricStore, StoreSnapshot
from loadcheck.scenarios import INVENTORY_SPIKE, ORDER_FLOW, resolve_scenario
from loadcheck.scenarios.order_flow import order_flow


@dataclass(frozen=True, slots=True)
class _InstantContext(RunContext):
    """Records think times instead of waiting them out."""

    pauses: list[float] = field(default_factory=list)

    async def sleep(self, seconds: float, max_seconds: float | None = None) -> None:
        self.pauses.append(self.think_time(seconds, max_seconds))


def _drive(
    fn: ScenarioFn, handler: Any, env: Mapping[str, str] | None = None
) -> tuple[_InstantContext, StoreSnapshot]:
    store = MetricStore()

    async def main() -> _InstantContext:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            ctx = _InstantContext(
                http=HttpClient(client, store),
                metrics=store,
                env=env or {"BASE_URL": "http://shop.test"},
                vu_id=1,
                iteration=0,
                random=Random(5),
            )
            await fn(ctx)
            return ctx

    ctx = asyncio.run(main())
    return ctx, store.snapshot()


class _Shop:
    def __init__(self, product_status: int = 200) -> None:
        self.product_status = product_status
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.startswith("/api/v1/products/"):
            return httpx.Response(self.product_status, json={"price": 19.5})
        body = json.loads(request.content)
        if path == "/api/v1/cart/items":
            assert body["productId"].startswith("PROD-")
            assert 1 <= body["quantity"] <= 5
            return httpx.Response(201, json={"cartId": "CART-1"})
        if path == "/api/v1/orders":
            assert body == {"cartId": "CART-1", "userId": "USER-TEST"}
            return httpx.Response(201, json={"orderId": "ORD-9"})
        if path == "/api/v1/orders/ORD-9/pay":
            assert body == {"paymentMethod": "CREDIT_CARD", "amount": 19.5}
            return httpx.Response(202)
        return httpx.Response(404)


def test_order_flow_chains_saved_values_through_each_step() -> None:
    shop = _Shop()
    ctx, snapshot = _drive(order_flow, shop, {"BASE_URL": "http://shop.test", "AUTH_TOKEN": "secret"})

    assert shop.requests[0].url.path.startswith("/api/v1/products/PROD-")
    assert [r.url.path for r in shop.requests[1:]] == [
        "/api/v1/cart/items",
        "/api/v1/orders",
        "/api/v1/orders/ORD-9/pay",
    ]
    assert all(r.headers["Authorization"] == "Bearer secret" for r in shop.requests)
    assert len({r.headers["Idempotency-Key"] for r in shop.requests}) == 1
    assert snapshot["checks"].rate == 1.0
    assert snapshot["http_req_failed"].rate == 0.0
    first, second, third = ctx.pauses
    assert 1 <= first <= 3
    assert 2 <= second <= 5
    assert 1 <= third <= 2


def test_order_flow_stops_when_product_lookup_fails() -> None:
    shop = _Shop(product_status=404)
    ctx, snapshot = _drive(order_flow, shop)

    assert len(shop.requests) == 1
    assert "Authorization" not in shop.requests[0].headers
    assert snapshot["checks"].rate == 0.0
    assert ctx.pauses == []


def test_reserve_accepts_out_of_stock_answers() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/v1/inventory/reserve"
        assert 1 <= json.loads(request.content)["quantity"] <= 4
        return httpx.Response(409)

    ctx, snapshot = _drive(INVENTORY_SPIKE.exec_fns["reserve_stock"], handler)
    assert snapshot["checks"].rate == 1.0
    assert snapshot["http_req_failed"].rate == 0.0
    assert 0.2 <= ctx.pauses[0] <= 0.8


def test_spike_workloads_run_against_a_stub_service() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            assert request.url.path.startswith("/api/v1/inventory/PROD-")
            assert request.headers["User-Agent"] == "loadcheck spike test"
            return httpx.Response(200, json={"available": 3})
        return httpx.Response(201)

    config = apply_options(
        RunConfig(vus=1, iterations=1),
        INVENTORY_SPIKE.options,
        {
            "scenarios": {
                "inventory_check": {"exec": "check_stock", "injection": [{"atOnceUsers": 4}]},
                "inventory_reserve": {"exec": "reserve_stock", "injection": [{"atOnceUsers": 2}]},
            },
            "env": {"BASE_URL": "http://shop.test"},
        },
    )
    summary = run(
        config,
        INVENTORY_SPIKE.fn,
        transport=httpx.MockTransport(handler),
        exec_fns=INVENTORY_SPIKE.exec_fns,
    )

    assert summary.stop_reason is StopReason.ARRIVALS
    assert [w.iterations_completed for w in summary.workloads] == [4, 2]
    assert summary.metrics["checks"].rate == 1.0
    assert summary.metrics["http_reqs"].total == 6


def test_new_builtins_are_resolvable_by_name() -> None:
    assert resolve_scenario("order_flow") is ORDER_FLOW
    assert resolve_scenario("inventory_spike") is INVENTORY_SPIKE


@given(
    low=st.floats(min_value=0, max_value=10),
    spread=st.floats(min_value=0, max_value=10),
    seed=st.integers(),
)
def test_think_time_stays_within_bounds(low: float, spread: float, seed: int) -> None:
    ctx = RunContext(http=None, metrics=MetricStore(), env={}, vu_id=1, iteration=0, random=Random(seed))  # type: ignore[arg-type]
    pause = ctx.think_time(low, low + spread)
    assert low <= pause <= low + spread + 1e-9
    assert ctx.think_time(low) == low


def test_think_time_rejects_inverted_range() -> None:
    ctx = RunContext(http=None, metrics=MetricStore(), env={}, vu_id=1, iteration=0)  # type: ignore[arg-type]
    with pytest.raises(ValueError):
        ctx.think_time(2, 1)
