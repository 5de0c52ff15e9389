"""E-commerce order flow: product, cart, order, payment.

Each step feeds the next with a value saved from the previous response
(price, cart id, order id). Users arrive on an open-model ramp::

    loadcheck run --scenario order_flow -e BASE_URL=http://localhost:8080 -e AUTH_TOKEN=...
"""

from __future__ import annotations

import uuid
from typing import Any

from loadcheck.loadgen.client import Response
from loadcheck.loadgen.context import RunContext
from loadcheck.scenarios.base import Scenario

DEFAULT_BASE_URL = "http://localhost:8080"
USER_ID = "USER-TEST"

OPTIONS: dict[str, Any] = {
    "injection": [{"rampUsers": 100, "during": "5m"}],
    "thresholds": {
        "http_req_duration": ["p(95)<200"],
        "http_req_failed": ["rate<0.05"],
    },
    "http": {
        "headers": {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": "loadcheck order flow",
        },
    },
}


def _saved(resp: Response, key: str) -> Any:
    if resp.status >= 400 or not resp.body:
        return None
    try:
        body = resp.json()
    except ValueError:
        return None
    return body.get(key) if isinstance(body, dict) else None


async def order_flow(ctx: RunContext) -> None:
    base_url = ctx.env.get("BASE_URL") or DEFAULT_BASE_URL
    product_id = f"PROD-{ctx.random.randrange(1000)}"
    quantity = ctx.random.randint(1, 5)
    headers = {
        "Correlation-Id": str(uuid.uuid4()),
        "Idempotency-Key": str(uuid.uuid4()),
    }
    token = ctx.env.get("AUTH_TOKEN")
    if token:
        headers["Authorization"] = f"Bearer {token}"

    resp = await ctx.http.get(f"{base_url}/api/v1/products/{product_id}", headers=headers)
    ctx.check(resp, {"get product status is 200": lambda r: r.status == 200})
    price = _saved(resp, "price")
    if price is None:
        return
    await ctx.sleep(1, 3)

    resp = await ctx.http.post(
        f"{base_url}/api/v1/cart/items",
        headers=headers,
        json={"productId": product_id, "quantity": quantity},
    )
    ctx.check(resp, {"add to cart status is 201": lambda r: r.status == 201})
    cart_id = _saved(resp, "cartId")
    if cart_id is None:
        return
    await ctx.sleep(2, 5)

    resp = await ctx.http.post(
        f"{base_url}/api/v1/orders",
        headers=headers,
        json={"cartId": cart_id, "userId": USER_ID},
    )
    ctx.check(resp, {"create order status is 201": lambda r: r.status == 201})
    order_id = _saved(resp, "orderId")
    if order_id is None:
        return
    await ctx.sleep(1, 2)

    resp = await ctx.http.post(
        f"{base_url}/api/v1/orders/{order_id}/pay",
        headers=headers,
        json={"paymentMethod": "CREDIT_CARD", "amount": price},
        expected_statuses=(200, 202),
    )
    ctx.check(resp, {"payment accepted": lambda r: r.status in (200, 202)})


ORDER_FLOW = Scenario(
    name="order_flow",
    fn=order_flow,
    options=OPTIONS,
    description="Product, cart, order and payment with values carried between steps",
)
