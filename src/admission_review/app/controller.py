"""Run controller: owns the run lifecycle, the exclusive run slot, and shared state.

One controller instance is built per process and injected into the API; it is
the only writer of the active run, the log and history buffers, the config and
the result cache. All of its methods run on the event loop, so checking and
setting the run flag without an ``await`` in between is atomic.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from .backend import VerificationBackend
from .buffers import LogBuffer, ResultCache, RunHistory
from .errors import BusyError, WorkSourceError
from .models import (
    EngineStatus,
    LogLevel,
    Run,
    RunKind,
    RunSummary,
    SubjectRef,
    SubjectResult,
    SubjectResultSummary,
    VerificationOutcome,
    WorkItem,
    WorkItemListing,
    utc_now,
)
from .pool import BoundedWorkerPool
from .processor import SubjectProcessor
from .retry import RetryPolicy
from .settings import VerificationConfig
from .work_source import ContentFetcher, WorkSource

logger = logging.getLogger("admission_review")

SleepFn = Callable[[float], Awaitable[Any]]

_LOGGING_LEVELS = {"info": logging.INFO, "warn": logging.WARNING, "error": logging.ERROR}


class RunController:
    def __init__(
        self,
        *,
        work_source: WorkSource,
        fetcher: ContentFetcher,
        backend: VerificationBackend,
        config: VerificationConfig | None = None,
        log_capacity: int = 500,
        history_capacity: int = 50,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.work_source = work_source
        self.fetcher = fetcher
        self.backend = backend
        self.config = config or VerificationConfig()
        self.logs = LogBuffer(log_capacity)
        self.history = RunHistory(history_capacity)
        self.results = ResultCache()
        self._sleep = sleep
        self._running = False
        self._stop_requested = False
        self._current_run: Run | None = None
        self._last_run_ms = 0

    # ------------------------------------------------------------------ logging

    def log(self, level: LogLevel, message: str, data: dict[str, Any] | None = None) -> None:
        self.logs.append(level, message, data)
        if data:
            logger.log(_LOGGING_LEVELS[level], "%s data=%s", message, data)
        else:
            logger.log(_LOGGING_LEVELS[level], "%s", message)

    # ------------------------------------------------------------------ state

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def current_run(self) -> Run | None:
        return self._current_run

    def stop_requested(self) -> bool:
        return self._stop_requested

    def request_stop(self) -> bool:
        """Raise the cooperative stop flag; returns False when nothing is running."""
        if not self._running:
            return False
        self._stop_requested = True
        self.log("info", "Stop signal sent to running batch")
        return True

    def update_config(self, updates: dict[str, Any]) -> VerificationConfig:
        """Apply whitelisted config updates; they take effect on the next run."""
        self.config = self.config.apply(updates)
        self.log("info", "Configuration updated", dict(updates))
        return self.config

    # ------------------------------------------------------------------ runs

    async def run_batch(self) -> Run | None:
        """Process every subject from the work source; None when a run is already active."""
        if self._running:
            self.log("warn", "Batch already running, skipping")
            return None
        run = self._begin_run("batch")
        config = self.config
        self.log("info", "Batch verification started", {"run_id": run.run_id})
        try:
            await self._execute_batch(run, config)
        except Exception as exc:  # noqa: BLE001
            run.status = "error"
            self.log("error", "Batch run failed", {"error": str(exc)})
        finally:
            self._finish_run(run)
        return run

    async def verify_subject(self, subject_id: str, name: str | None = None) -> Run:
        """Run one subject on demand; raises BusyError while another run is active."""
        if self._running:
            raise BusyError(
                "A batch job is currently running. Wait for it to finish or stop it first."
            )
        run = self._begin_run("single")
        run.total_subjects = 1
        self.log(
            "info", f"Single subject verification started: {subject_id}", {"run_id": run.run_id}
        )
        try:
            processor = self._build_processor(self.config)
            result = await processor.process(
                SubjectRef(subject_id=str(subject_id), name=name or str(subject_id)),
                should_stop=self.stop_requested,
            )
            run.record(result)
            run.status = "stopped" if self._stop_requested else "completed"
        except Exception as exc:  # noqa: BLE001
            run.status = "error"
            self.log(
                "error",
                f"Single subject verification failed: {subject_id}",
                {"error": str(exc)},
            )
        finally:
            self._finish_run(run)
        return run

    async def verify_document(self, item: WorkItem) -> VerificationOutcome:
        """Verify one ad-hoc document; no run, no write-back, no cache entry."""
        if not item.has_content:
            return VerificationOutcome.skipped("not_uploaded")
        return await self._build_processor(self.config).verify_item(item)

    async def _execute_batch(self, run: Run, config: VerificationConfig) -> None:
        retry = self._build_retry(config)
        try:
            subjects = await retry.call(self.work_source.list_subjects, "Fetch subject list")
        except Exception as exc:  # noqa: BLE001
            run.status = "error"
            self.log("error", "Failed to fetch subject list", {"error": str(exc)})
            return

        run.total_subjects = len(subjects)
        self.log("info", f"Found {len(subjects)} subjects to process")
        processor = self._build_processor(config, retry)
        for position, subject in enumerate(subjects):
            if position > 0 and config.subject_delay_ms > 0 and not self._stop_requested:
                await self._sleep(config.subject_delay_ms / 1000.0)
            if self._stop_requested:
                self.log("info", "Batch stopped by operator")
                break
            self.log(
                "info",
                f"Processing subject {position + 1}/{len(subjects)}: "
                f"{subject.subject_id} ({subject.name})",
            )
            result = await processor.process(subject, should_stop=self.stop_requested)
            run.record(result)

        run.status = "stopped" if self._stop_requested else "completed"

    def _begin_run(self, kind: RunKind) -> Run:
        self._running = True
        self._stop_requested = False
        run = Run(run_id=self._next_run_id(), kind=kind)
        self._current_run = run
        return run

    def _finish_run(self, run: Run) -> None:
        if run.status == "running":
            run.status = "error"
        run.ended_at = utc_now()
        self.log(
            "info",
            f"Run finished: {run.status}",
            {
                "run_id": run.run_id,
                "processed": run.processed,
                "completed": run.completed,
                "approved": run.approved,
                "rejected": run.rejected,
            },
        )
        self.history.append(run.summary())
        self._current_run = None
        self._stop_requested = False
        self._running = False

    def _next_run_id(self) -> str:
        # Millisecond timestamp in base 36, bumped so ids strictly increase.
        now_ms = max(int(time.time() * 1000), self._last_run_ms + 1)
        self._last_run_ms = now_ms
        return _base36(now_ms)

    def _build_retry(self, config: VerificationConfig) -> RetryPolicy:
        return RetryPolicy(
            attempts=config.retry_attempts,
            base_delay_ms=config.retry_delay_ms,
            log=self.log,
            sleep=self._sleep,
        )

    def _build_processor(
        self, config: VerificationConfig, retry: RetryPolicy | None = None
    ) -> SubjectProcessor:
        return SubjectProcessor(
            work_source=self.work_source,
            fetcher=self.fetcher,
            backend=self.backend,
            config=config,
            retry=retry or self._build_retry(config),
            pool=BoundedWorkerPool(
                config.concurrency, delay_s=config.item_delay_ms / 1000.0, sleep=self._sleep
            ),
            cache=self.results,
            log=self.log,
        )

    # ------------------------------------------------------------------ queries

    def engine_status(self) -> EngineStatus:
        return EngineStatus(
            running=self._running,
            stop_requested=self._stop_requested,
            provider=getattr(self.backend, "provider", "unknown"),
            concurrency=self.config.concurrency,
            retry_attempts=self.config.retry_attempts,
            skip_already_verified=self.config.skip_already_verified,
        )

    def run_detail(self, run_id: str) -> Run | RunSummary | None:
        """Full detail while the run is active, its summary once finalized."""
        if self._current_run is not None and self._current_run.run_id == run_id:
            return self._current_run
        return self.history.find(run_id)

    def subject_result(self, subject_id: str) -> SubjectResult | None:
        return self.results.get(subject_id)

    def subject_results(self) -> list[SubjectResultSummary]:
        return self.results.summaries()

    async def list_subjects(self) -> list[SubjectRef]:
        return await self._build_retry(self.config).call(
            self.work_source.list_subjects, "Fetch subject list"
        )

    async def list_work_items(self, subject_id: str) -> WorkItemListing:
        listing = await self._build_retry(self.config).call(
            lambda: self.work_source.list_work_items(subject_id),
            f"Fetch items for {subject_id}",
        )
        if not listing.ok:
            raise WorkSourceError(f"No document list returned for subject {subject_id}")
        return listing


def _base36(value: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    encoded = ""
    while value:
        value, remainder = divmod(value, 36)
        encoded = digits[remainder] + encoded
    return encoded or "0"
