"""Bounded, classified retries for remote calls."""

from __future__ import annotations

import asyncio
import re
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx

from .errors import NonRetryableError

T = TypeVar("T")

LogFn = Callable[..., Any]
SleepFn = Callable[[float], Awaitable[Any]]

NON_RETRYABLE_STATUS_CODES = frozenset({401, 403, 429})
_NON_RETRYABLE_PATTERN = re.compile(
    r"\b(?:401|403|429)\b|quota|rate[\s_-]?limit|unauthori[sz]ed|forbidden|billing",
    re.IGNORECASE,
)


def is_non_retryable(error: BaseException) -> bool:
    """Authentication, quota and rate-limit failures are never retried."""
    if isinstance(error, NonRetryableError):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code in NON_RETRYABLE_STATUS_CODES
    return bool(_NON_RETRYABLE_PATTERN.search(str(error)))


class RetryPolicy:
    """Runs an async operation up to ``attempts`` times with exponential backoff.

    The delay before retry n is ``base_delay_ms * 2 ** (n - 1)``. ``log`` is
    called as ``log(level, message)`` once per retried attempt (warn) and once
    on the final or non-retryable failure (error).
    """

    def __init__(
        self,
        *,
        attempts: int,
        base_delay_ms: int,
        log: LogFn,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.attempts = max(1, attempts)
        self.base_delay_ms = max(0, base_delay_ms)
        self._log = log
        self._sleep = sleep

    def delay_ms(self, attempt: int) -> int:
        return self.base_delay_ms * 2 ** (attempt - 1)

    async def call(self, operation: Callable[[], Awaitable[T]], label: str) -> T:
        last_error: Exception | None = None
        for attempt in range(1, self.attempts + 1):
            try:
                return await operation()
            except Exception as exc:  # noqa: BLE001
                last_error = exc
                if is_non_retryable(exc):
                    self._log("error", f"{label} failed with non-retryable error: {exc}")
                    raise
                if attempt < self.attempts:
                    delay = self.delay_ms(attempt)
                    self._log(
                        "warn",
                        f"{label} failed (attempt {attempt}/{self.attempts}), "
                        f"retrying in {delay}ms: {exc}",
                    )
                    await self._sleep(delay / 1000.0)
        if last_error is None:
            raise RuntimeError(f"{label} failed with unknown error")
        self._log("error", f"{label} failed after {self.attempts} attempts: {last_error}")
        raise last_error
