from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor

import pytest
from hypothesis import given, strategies as st

from loadcheck.errors import MetricKindConflict, UnknownMetricOrKindMismatch
from loadcheck.metrics import MetricKind, MetricStore, RateSnapshot, TrendSnapshot


def test_register_same_kind_twice_is_a_no_op() -> None:
    store = MetricStore()
    store.register("errors", MetricKind.RATE)
    assert store.register("errors", MetricKind.RATE) is MetricKind.RATE
    assert store.snapshot()["errors"].kind is MetricKind.RATE


def test_register_with_different_kind_conflicts() -> None:
    store = MetricStore()
    store.register("latency", MetricKind.TREND)
    with pytest.raises(MetricKindConflict):
        store.register("latency", MetricKind.COUNTER)


def test_record_requires_registration() -> None:
    store = MetricStore()
    with pytest.raises(UnknownMetricOrKindMismatch):
        store.record("missing", 1)
    assert "missing" not in store


@pytest.mark.parametrize(
    ("kind", "value"),
    [
        (MetricKind.COUNTER, True),
        (MetricKind.COUNTER, "3"),
        (MetricKind.TREND, "fast"),
        (MetricKind.TREND, float("nan")),
        (MetricKind.RATE, "yes"),
    ],
)
def test_record_rejects_wrong_shape(kind: MetricKind, value: object) -> None:
    store = MetricStore()
    store.register("m", kind)
    with pytest.raises(UnknownMetricOrKindMismatch):
        store.record("m", value)


def test_threaded_counter_increments_are_not_lost() -> None:
    store = MetricStore()
    store.register("hits", MetricKind.COUNTER)

    def writer() -> None:
        for _ in range(1000):
            store.record("hits", 1)

    with ThreadPoolExecutor(max_workers=100) as pool:
        for future in [pool.submit(writer) for _ in range(100)]:
            future.result()

    snapshot = store.snapshot()["hits"]
    assert snapshot.total == 100_000
    assert snapshot.count == 100_000


def test_async_writers_interleaving_keep_every_sample() -> None:
    store = MetricStore()
    store.register("latency", MetricKind.TREND)

    async def writer(offset: int) -> None:
        for i in range(200):
            store.record("latency", offset + i)
            if i % 50 == 0:
                await asyncio.sleep(0)

    async def main() -> None:
        await asyncio.gather(*(writer(n * 1000) for n in range(50)))

    asyncio.run(main())
    snapshot = store.snapshot()["latency"]
    assert isinstance(snapshot, TrendSnapshot)
    assert snapshot.count == 10_000


@given(st.lists(st.booleans(), min_size=1, max_size=500))
def test_rate_reports_exact_fraction(events: list[bool]) -> None:
    store = MetricStore()
    store.register("errors", MetricKind.RATE)
    for event in events:
        store.record("errors", event)
    snapshot = store.snapshot()["errors"]
    assert isinstance(snapshot, RateSnapshot)
    assert snapshot.passes == sum(events)
    assert snapshot.total == len(events)
    assert snapshot.rate == sum(events) / len(events)


def test_rate_is_order_independent_under_threads() -> None:
    store = MetricStore()
    store.register("errors", MetricKind.RATE)

    def writer(flag: bool) -> None:
        for _ in range(500):
            store.record("errors", flag)

    with ThreadPoolExecutor(max_workers=20) as pool:
        futures = [pool.submit(writer, i % 4 == 0) for i in range(20)]
        for future in futures:
            future.result()

    snapshot = store.snapshot()["errors"]
    assert isinstance(snapshot, RateSnapshot)
    assert snapshot.rate == pytest.approx(0.25)
    assert snapshot.total == 10_000


@given(
    st.lists(
        st.floats(min_value=0.0, max_value=1e6, allow_nan=False, allow_infinity=False),
        min_size=1,
        max_size=300,
    )
)
def test_trend_percentiles_are_ordered(samples: list[float]) -> None:
    store = MetricStore()
    store.register("duration", MetricKind.TREND)
    for sample in samples:
        store.record("duration", sample)
    snapshot = store.snapshot()["duration"]
    assert isinstance(snapshot, TrendSnapshot)
    assert snapshot.percentile(0) == min(samples)
    assert snapshot.percentile(100) == max(samples) == snapshot.max
    assert snapshot.percentile(50) <= snapshot.percentile(95) + 1e-9
    assert snapshot.percentile(95) <= snapshot.percentile(100) + 1e-9


def test_snapshot_is_isolated_from_later_writes() -> None:
    store = MetricStore()
    store.register("duration", MetricKind.TREND)
    store.record("duration", 5)
    before = store.snapshot()
    store.record("duration", 500)
    assert before["duration"].count == 1
    assert before["duration"].max == 5
    assert store.snapshot()["duration"].count == 2


def test_record_check_feeds_checks_rate_and_tally() -> None:
    store = MetricStore()
    store.record_check("status is 200", True)
    store.record_check("status is 200", False)
    store.record_check("has body", True)
    snapshot = store.snapshot()
    checks = snapshot["checks"]
    assert isinstance(checks, RateSnapshot)
    assert (checks.passes, checks.total) == (2, 3)
    tallies = {tally.name: (tally.passes, tally.fails) for tally in snapshot.checks}
    assert tallies == {"status is 200": (1, 1), "has body": (1, 0)}
