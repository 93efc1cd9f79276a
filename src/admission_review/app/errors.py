"""Error taxonomy shared by the orchestrator and the HTTP surface."""

from __future__ import annotations


class ReviewError(Exception):
    """Base class for orchestrator errors."""


class NonRetryableError(ReviewError):
    """Remote failure that must not be retried (auth, quota, rate limit)."""


class WorkSourceError(ReviewError):
    """Work source returned a response the orchestrator cannot use."""


class BusyError(ReviewError):
    """A run is already active; the request was rejected."""


class InvalidScheduleError(ReviewError):
    """Cron expression failed validation."""


class ConfigUpdateError(ReviewError):
    """Config update named unknown fields or carried invalid values."""
