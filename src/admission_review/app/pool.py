"""Concurrency-limited worker pool with chunk-boundary cancellation."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

T = TypeVar("T")
R = TypeVar("R")

SleepFn = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class Settled(Generic[T, R]):
    """One finished task: exactly one of ``value`` / ``error`` is meaningful."""

    item: T
    value: R | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class PoolReport(Generic[T, R]):
    settled: list[Settled[T, R]] = field(default_factory=list)
    chunks_run: int = 0
    stopped: bool = False


def chunked(items: Sequence[T], size: int) -> list[list[T]]:
    if size < 1:
        raise ValueError("chunk size must be >= 1")
    return [list(items[start : start + size]) for start in range(0, len(items), size)]


class BoundedWorkerPool:
    """Runs tasks in consecutive chunks of at most ``concurrency`` items.

    Every task in a chunk runs through a semaphore of the same size, and the
    pool waits for the whole chunk to settle before starting the next one.
    ``should_stop`` is only polled at chunk boundaries; a running chunk is
    never interrupted.
    """

    def __init__(
        self,
        concurrency: int,
        *,
        delay_s: float = 0.0,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.concurrency = concurrency
        self.delay_s = max(0.0, delay_s)
        self._sleep = sleep

    async def run(
        self,
        items: Sequence[T],
        worker: Callable[[T], Awaitable[R]],
        *,
        should_stop: Callable[[], bool] | None = None,
    ) -> PoolReport[T, R]:
        report: PoolReport[T, R] = PoolReport()
        semaphore = asyncio.Semaphore(self.concurrency)

        async def gated(item: T) -> R:
            async with semaphore:
                return await worker(item)

        for index, chunk in enumerate(chunked(items, self.concurrency)):
            if index > 0 and self.delay_s > 0:
                await self._sleep(self.delay_s)
            if should_stop is not None and should_stop():
                report.stopped = True
                break
            outcomes = await asyncio.gather(
                *(gated(item) for item in chunk), return_exceptions=True
            )
            report.chunks_run += 1
            for item, outcome in zip(chunk, outcomes):
                if isinstance(outcome, Exception):
                    report.settled.append(Settled(item=item, error=outcome))
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    report.settled.append(Settled(item=item, value=outcome))
        return report
