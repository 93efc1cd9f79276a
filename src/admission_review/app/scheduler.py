"""Cron-driven batch trigger on top of APScheduler.

Beginner terms used in this file:
- Job: the APScheduler entry that fires ``BatchScheduler.fire`` on the cron schedule.
- Tick: one firing of that job.
- Active: the job is registered; the underlying scheduler itself may keep running.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any

from apscheduler.events import EVENT_JOB_MAX_INSTANCES, JobSubmissionEvent
from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from .controller import RunController
from .errors import InvalidScheduleError
from .models import Run, SchedulerStatus, StatusSnapshot, utc_now
from .settings import VerificationConfig

logger = logging.getLogger(__name__)

JOB_ID = "batch-verification"
INITIAL_JOB_ID = "batch-verification-initial"


def validate_schedule(expression: str) -> CronTrigger:
    """Parse a five-field crontab expression; raises InvalidScheduleError."""
    if not isinstance(expression, str) or not expression.strip():
        raise InvalidScheduleError("Cron schedule must be a non-empty string")
    try:
        return CronTrigger.from_crontab(expression.strip())
    except (ValueError, TypeError) as exc:
        raise InvalidScheduleError(f"Invalid cron schedule {expression!r}: {exc}") from exc


class BatchScheduler:
    def __init__(
        self,
        controller: RunController,
        *,
        initial_run_delay_s: float = 10.0,
        scheduler: AsyncIOScheduler | None = None,
    ) -> None:
        self.controller = controller
        self.initial_run_delay_s = initial_run_delay_s
        self._scheduler = scheduler
        self._active = False
        self._listening = False
        self._tasks: set[asyncio.Task[Run | None]] = set()

    @property
    def active(self) -> bool:
        return self._active

    @property
    def engine(self) -> AsyncIOScheduler:
        # Built on first use so it binds to the loop that is running by then.
        if self._scheduler is None:
            self._scheduler = AsyncIOScheduler(timezone="UTC")
        if not self._listening:
            self._scheduler.add_listener(self._on_max_instances, EVENT_JOB_MAX_INSTANCES)
            self._listening = True
        return self._scheduler

    def get_job(self, job_id: str = JOB_ID) -> Job | None:
        if self._scheduler is None:
            return None
        return self._scheduler.get_job(job_id)

    def start(self) -> bool:
        """Register the cron job; False (and a warning) when already active."""
        if self._active:
            self.controller.log("warn", "Scheduler already running")
            return False
        schedule = self.controller.config.cron_schedule
        trigger = validate_schedule(schedule)
        self._ensure_running()
        self.engine.add_job(
            self.fire,
            trigger=trigger,
            id=JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._active = True
        self.controller.log("info", f"Scheduler started with cron: {schedule}")
        return True

    def stop(self) -> bool:
        """Remove the cron job and signal an active run to stop.

        Returns True when a job was removed or a running batch was signalled,
        so a manually started batch can be stopped with the scheduler idle.
        """
        removed = False
        if self._active:
            if self.get_job(JOB_ID) is not None:
                self.engine.remove_job(JOB_ID)
            self._active = False
            removed = True
            self.controller.log("info", "Scheduler stopped")
        else:
            self.controller.log("warn", "Scheduler is not running")
        signalled = self.controller.request_stop()
        return removed or signalled

    async def fire(self) -> Run | None:
        """One scheduled tick; a no-op while another run holds the slot."""
        if self.controller.is_running:
            self.controller.log("warn", "Scheduled tick skipped: a run is already active")
            return None
        return await self.controller.run_batch()

    def _on_max_instances(self, event: JobSubmissionEvent) -> None:
        # APScheduler drops a tick before fire() while the previous one still holds the slot.
        self.controller.log(
            "warn", "Scheduled tick skipped: a run is already active", {"job_id": event.job_id}
        )

    def trigger_batch(self) -> asyncio.Task[Run | None] | None:
        """Start a batch in the background; None when a run is active or pending."""
        if self.controller.is_running or any(not task.done() for task in self._tasks):
            return None
        task = asyncio.get_running_loop().create_task(self.controller.run_batch())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def update_config(self, updates: dict[str, Any]) -> VerificationConfig:
        """Apply config updates; a new schedule is validated before anything changes."""
        previous = self.controller.config.cron_schedule
        trigger: CronTrigger | None = None
        if "cron_schedule" in updates:
            trigger = validate_schedule(updates["cron_schedule"])
        config = self.controller.update_config(updates)
        if trigger is not None and config.cron_schedule != previous and self._active:
            self.engine.reschedule_job(JOB_ID, trigger=trigger)
            self.controller.log("info", f"Scheduler rescheduled with cron: {config.cron_schedule}")
        return config

    def init(self) -> None:
        config = self.controller.config
        self.controller.log(
            "info",
            "Verification engine initialized",
            {
                "provider": self.controller.engine_status().provider,
                "cron_schedule": config.cron_schedule,
                "auto_start": config.auto_start,
            },
        )
        if not config.auto_start:
            return
        self.start()
        self.engine.add_job(
            self.fire,
            trigger=DateTrigger(run_date=utc_now() + timedelta(seconds=self.initial_run_delay_s)),
            id=INITIAL_JOB_ID,
            replace_existing=True,
        )
        logger.info(
            "scheduler event=initial_batch_queued delay_s=%s", self.initial_run_delay_s
        )

    def shutdown(self) -> None:
        if self._active:
            self.stop()
        else:
            self.controller.request_stop()
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    def _ensure_running(self) -> None:
        if not self.engine.running:
            self.engine.start()

    def next_run_at(self) -> datetime | None:
        if not self._active:
            return None
        job = self.get_job(JOB_ID)
        return getattr(job, "next_run_time", None) if job is not None else None

    def status(self) -> SchedulerStatus:
        config = self.controller.config
        return SchedulerStatus(
            active=self._active,
            cron_schedule=config.cron_schedule,
            auto_start=config.auto_start,
            next_run_at=self.next_run_at(),
        )

    def snapshot(self, recent: int = 10) -> StatusSnapshot:
        current = self.controller.current_run
        return StatusSnapshot(
            scheduler=self.status(),
            engine=self.controller.engine_status(),
            current_run=current.summary() if current is not None else None,
            recent_runs=self.controller.history.recent(recent),
        )
