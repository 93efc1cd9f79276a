"""Pydantic models shared across the controller, processor, adapters, and API.

Beginner terms used in this file:
- Subject: one applicant whose documents are reviewed in a run.
- Work item: one document slot for a subject (uploaded or not).
- Outcome: the structured verdict for one work item in one run.
- Run: one pass of the orchestrator over a list of subjects.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

OutcomeStatus = Literal["approved", "rejected", "skipped", "error"]
SubjectStatus = Literal["processing", "completed", "partial", "skipped", "error"]
RunStatus = Literal["running", "completed", "stopped", "error"]
RunKind = Literal["batch", "single"]
LogLevel = Literal["info", "warn", "error"]
SkipReason = Literal["not_uploaded", "already_verified"]


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class WorkItem(BaseModel):
    """Immutable snapshot of one document slot, as listed by the work source."""

    model_config = ConfigDict(frozen=True)

    item_id: str
    label: str
    category: str = ""
    # Free-text requirement the document must satisfy.
    description: str = ""
    # Location of the uploaded file; None or blank means nothing uploaded.
    content_ref: str | None = None
    filename: str | None = None
    required: bool = False
    # Work source already marked this document as verified.
    verified: bool = False

    @property
    def has_content(self) -> bool:
        return bool(self.content_ref and self.content_ref.strip())


class SubjectRef(BaseModel):
    subject_id: str
    name: str


class WorkItemListing(BaseModel):
    """Result of listing one subject's items; ok=False means the source had no data."""

    ok: bool
    items: list[WorkItem] = Field(default_factory=list)


class FetchedContent(BaseModel):
    data: bytes
    content_type: str = "application/octet-stream"


class ItemDescriptor(BaseModel):
    """Metadata handed to the verification backend next to the raw bytes."""

    label: str
    category: str = ""
    description: str = ""
    content_type: str = "application/octet-stream"
    filename: str | None = None

    @classmethod
    def for_item(cls, item: WorkItem, content_type: str) -> ItemDescriptor:
        return cls(
            label=item.label,
            category=item.category,
            description=item.description,
            content_type=content_type,
            filename=item.filename,
        )


class VerificationOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: OutcomeStatus
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    remark: str = ""
    issues: list[str] = Field(default_factory=list)
    extracted_data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def skipped(cls, reason: SkipReason) -> VerificationOutcome:
        if reason == "not_uploaded":
            return cls(
                status="skipped",
                remark="Document not uploaded - skipped",
                issues=["No file uploaded"],
            )
        return cls(status="skipped", remark="Document already verified - skipped")

    @classmethod
    def failed(cls, error: BaseException) -> VerificationOutcome:
        return cls(
            status="error",
            remark=f"Verification failed: {error}",
            issues=["Verification process error"],
        )


class AnnotatedItem(BaseModel):
    """A work item merged with its outcome for this run (None until processed)."""

    item: WorkItem
    outcome: VerificationOutcome | None = None
    skip_reason: SkipReason | None = None


class SubjectCounts(BaseModel):
    # Items handed to the backend (uploaded, minus already-verified when skipped).
    total: int = 0
    uploaded: int = 0
    approved: int = 0
    rejected: int = 0
    errors: int = 0
    skipped: int = 0
    skipped_not_uploaded: int = 0
    skipped_already_verified: int = 0

    def record_skip(self, reason: SkipReason) -> None:
        self.skipped += 1
        if reason == "not_uploaded":
            self.skipped_not_uploaded += 1
        else:
            self.skipped_already_verified += 1


class SubjectResult(BaseModel):
    subject_id: str
    subject_name: str
    status: SubjectStatus = "processing"
    started_at: datetime = Field(default_factory=utc_now)
    ended_at: datetime | None = None
    counts: SubjectCounts = Field(default_factory=SubjectCounts)
    items: list[AnnotatedItem] = Field(default_factory=list)


class SubjectResultSummary(BaseModel):
    """Projection used when listing every cached subject."""

    subject_id: str
    subject_name: str
    status: SubjectStatus
    total_items: int
    uploaded: int
    approved: int
    rejected: int
    errors: int
    skipped: int
    verified_at: datetime | None

    @classmethod
    def from_result(cls, result: SubjectResult) -> SubjectResultSummary:
        return cls(
            subject_id=result.subject_id,
            subject_name=result.subject_name,
            status=result.status,
            total_items=len(result.items),
            uploaded=result.counts.uploaded,
            approved=result.counts.approved,
            rejected=result.counts.rejected,
            errors=result.counts.errors,
            skipped=result.counts.skipped,
            verified_at=result.ended_at,
        )


class StatusUpdate(BaseModel):
    """One row of the status write-back sent to the work source."""

    item_id: str
    status: str
    remark: str


class RunSummary(BaseModel):
    run_id: str
    kind: RunKind = "batch"
    status: RunStatus = "running"
    started_at: datetime = Field(default_factory=utc_now)
    ended_at: datetime | None = None
    total_subjects: int = 0
    processed: int = 0
    # Subjects that finished as completed or partial.
    completed: int = 0
    skipped: int = 0
    errors: int = 0
    items_verified: int = 0
    approved: int = 0
    rejected: int = 0
    item_errors: int = 0


class Run(RunSummary):
    """Active run; subject detail is dropped when the run is finalized."""

    subjects: list[SubjectResult] = Field(default_factory=list)

    def record(self, result: SubjectResult) -> None:
        self.subjects.append(result)
        self.processed += 1
        if result.status in ("completed", "partial"):
            self.completed += 1
            self.items_verified += result.counts.total
            self.approved += result.counts.approved
            self.rejected += result.counts.rejected
            self.item_errors += result.counts.errors
        elif result.status == "skipped":
            self.skipped += 1
        else:
            self.errors += 1

    def summary(self) -> RunSummary:
        return RunSummary.model_validate(self.model_dump(exclude={"subjects"}))


class LogEntry(BaseModel):
    timestamp: datetime = Field(default_factory=utc_now)
    level: LogLevel
    message: str
    data: dict[str, Any] | None = None


class EngineStatus(BaseModel):
    running: bool
    stop_requested: bool
    provider: str
    concurrency: int
    retry_attempts: int
    skip_already_verified: bool


class SchedulerStatus(BaseModel):
    active: bool
    cron_schedule: str
    auto_start: bool
    next_run_at: datetime | None = None


class StatusSnapshot(BaseModel):
    scheduler: SchedulerStatus
    engine: EngineStatus
    current_run: RunSummary | None = None
    recent_runs: list[RunSummary] = Field(default_factory=list)
