from __future__ import annotations

import asyncio

import pytest

from admission_review.app.pool import BoundedWorkerPool, chunked


def test_chunked_splits_in_order() -> None:
    assert chunked([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
    assert chunked([], 3) == []
    with pytest.raises(ValueError):
        chunked([1], 0)


def test_in_flight_never_exceeds_concurrency() -> None:
    state = {"in_flight": 0, "peak": 0}

    async def worker(item: int) -> int:
        state["in_flight"] += 1
        state["peak"] = max(state["peak"], state["in_flight"])
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        state["in_flight"] -= 1
        return item * 10

    report = asyncio.run(BoundedWorkerPool(3).run(list(range(8)), worker))

    assert state["peak"] == 3
    assert report.chunks_run == 3
    assert [settled.value for settled in report.settled] == [0, 10, 20, 30, 40, 50, 60, 70]


def test_failures_settle_without_cancelling_siblings() -> None:
    async def worker(item: str) -> str:
        if item == "b":
            raise RuntimeError("boom")
        return item.upper()

    report = asyncio.run(BoundedWorkerPool(2).run(["a", "b", "c"], worker))

    assert [settled.ok for settled in report.settled] == [True, False, True]
    assert str(report.settled[1].error) == "boom"
    assert report.settled[2].value == "C"


def test_stop_is_observed_between_chunks() -> None:
    seen: list[int] = []
    stop = {"flag": False}

    async def worker(item: int) -> int:
        seen.append(item)
        stop["flag"] = True
        return item

    report = asyncio.run(
        BoundedWorkerPool(2).run([1, 2, 3, 4, 5], worker, should_stop=lambda: stop["flag"])
    )

    assert seen == [1, 2]
    assert report.stopped is True
    assert report.chunks_run == 1
    assert len(report.settled) == 2


def test_delay_runs_between_chunks_only() -> None:
    sleeps: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    async def worker(item: int) -> int:
        return item

    pool = BoundedWorkerPool(2, delay_s=0.5, sleep=fake_sleep)
    asyncio.run(pool.run([1, 2, 3, 4, 5], worker))

    assert sleeps == [0.5, 0.5]


def test_concurrency_must_be_positive() -> None:
    with pytest.raises(ValueError):
        BoundedWorkerPool(0)
