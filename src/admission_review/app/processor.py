"""Drives one subject's documents: list, filter, verify through the pool, merge, write back."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from .backend import VerificationBackend
from .buffers import ResultCache
from .models import (
    AnnotatedItem,
    ItemDescriptor,
    SkipReason,
    StatusUpdate,
    SubjectRef,
    SubjectResult,
    VerificationOutcome,
    WorkItem,
    utc_now,
)
from .pool import BoundedWorkerPool
from .retry import RetryPolicy
from .settings import VerificationConfig
from .work_source import ContentFetcher, WorkSource

LogFn = Callable[..., Any]

# Status strings the work source expects in the write-back.
WRITE_BACK_STATUS = {"approved": "Verified", "rejected": "reject", "error": "error"}


def _never_stop() -> bool:
    return False


class SubjectProcessor:
    def __init__(
        self,
        *,
        work_source: WorkSource,
        fetcher: ContentFetcher,
        backend: VerificationBackend,
        config: VerificationConfig,
        retry: RetryPolicy,
        pool: BoundedWorkerPool,
        cache: ResultCache,
        log: LogFn,
    ) -> None:
        self.work_source = work_source
        self.fetcher = fetcher
        self.backend = backend
        self.config = config
        self.retry = retry
        self.pool = pool
        self.cache = cache
        self._log = log

    async def verify_item(self, item: WorkItem) -> VerificationOutcome:
        """Fetch and verify one uploaded item; the whole attempt is retried as a unit."""
        if not item.has_content:
            raise ValueError(f"Work item {item.item_id!r} has no content reference")
        content_ref = item.content_ref or ""

        async def attempt() -> VerificationOutcome:
            content = await self.fetcher.fetch(content_ref)
            descriptor = ItemDescriptor.for_item(item, content.content_type)
            return await self.backend.verify(content.data, descriptor)

        return await self.retry.call(attempt, f"Verify {item.label}")

    async def process(
        self, subject: SubjectRef, *, should_stop: Callable[[], bool] = _never_stop
    ) -> SubjectResult:
        result = SubjectResult(subject_id=subject.subject_id, subject_name=subject.name)
        try:
            await self._process(subject, result, should_stop)
        except Exception as exc:  # noqa: BLE001
            result.status = "error"
            self._log(
                "error", f"Subject {subject.subject_id}: processing failed", {"error": str(exc)}
            )
        result.ended_at = utc_now()
        self.cache.put(result)
        return result

    async def _process(
        self, subject: SubjectRef, result: SubjectResult, should_stop: Callable[[], bool]
    ) -> None:
        subject_id = subject.subject_id
        listing = await self.retry.call(
            lambda: self.work_source.list_work_items(subject_id),
            f"Fetch items for {subject_id}",
        )
        if not listing.ok:
            result.status = "skipped"
            self._log("warn", f"Subject {subject_id}: no document list returned")
            return

        result.items = [AnnotatedItem(item=item) for item in listing.items]
        counts = result.counts
        candidates: list[AnnotatedItem] = []
        for entry in result.items:
            if not entry.item.has_content:
                self._skip(entry, "not_uploaded")
                counts.record_skip("not_uploaded")
                continue
            counts.uploaded += 1
            if self.config.skip_already_verified and entry.item.verified:
                self._skip(entry, "already_verified")
                counts.record_skip("already_verified")
                continue
            candidates.append(entry)
        counts.total = len(candidates)

        if not candidates:
            result.status = "skipped"
            self._log(
                "info",
                f"Subject {subject_id}: no documents to verify",
                {
                    "not_uploaded": counts.skipped_not_uploaded,
                    "already_verified": counts.skipped_already_verified,
                },
            )
            return

        report = await self.pool.run(
            candidates, lambda entry: self.verify_item(entry.item), should_stop=should_stop
        )
        if report.stopped:
            self._log("info", f"Stopping mid-subject {subject_id}")

        updates: list[StatusUpdate] = []
        for settled in report.settled:
            entry = settled.item
            outcome = settled.value if settled.ok else VerificationOutcome.failed(settled.error)
            entry.outcome = outcome
            if outcome.status == "approved":
                counts.approved += 1
            elif outcome.status == "rejected":
                counts.rejected += 1
            else:
                counts.errors += 1
            updates.append(
                StatusUpdate(
                    item_id=entry.item.item_id,
                    status=WRITE_BACK_STATUS.get(outcome.status, "error"),
                    remark=outcome.remark,
                )
            )
            if settled.ok:
                self._log(
                    "info",
                    f"{subject_id} - {entry.item.label}: {outcome.status} "
                    f"({outcome.confidence:.0%})",
                    {"remark": outcome.remark},
                )
            else:
                self._log(
                    "error",
                    f"{subject_id} - {entry.item.label}: error",
                    {"error": str(settled.error)},
                )

        if updates:
            await self._write_back(subject_id, updates)

        processed = len(report.settled)
        if processed and counts.errors == processed:
            result.status = "error"
        elif counts.errors:
            result.status = "partial"
        else:
            result.status = "completed"

    async def _write_back(self, subject_id: str, updates: list[StatusUpdate]) -> None:
        try:
            await self.retry.call(
                lambda: self.work_source.report_status(subject_id, updates),
                f"Update status for {subject_id}",
            )
        except Exception as exc:  # noqa: BLE001
            self._log("error", f"{subject_id}: failed to update status", {"error": str(exc)})
            return
        self._log("info", f"{subject_id}: status updated ({len(updates)} documents)")

    @staticmethod
    def _skip(entry: AnnotatedItem, reason: SkipReason) -> None:
        entry.skip_reason = reason
        entry.outcome = VerificationOutcome.skipped(reason)
