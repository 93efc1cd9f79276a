from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import pytest
from fastapi.testclient import TestClient

from admission_review.app.controller import RunController
from admission_review.app.models import (
    FetchedContent,
    ItemDescriptor,
    StatusUpdate,
    SubjectRef,
    VerificationOutcome,
    WorkItem,
    WorkItemListing,
)
from admission_review.app.settings import Settings, VerificationConfig

Step = VerificationOutcome | Exception


def approved(remark: str = "Document matches the expected type") -> VerificationOutcome:
    return VerificationOutcome(status="approved", confidence=0.92, remark=remark)


def rejected(remark: str = "Document is blurry") -> VerificationOutcome:
    return VerificationOutcome(
        status="rejected", confidence=0.81, remark=remark, issues=["Low legibility"]
    )


def make_item(
    item_id: str,
    label: str,
    *,
    uploaded: bool = True,
    verified: bool = False,
) -> WorkItem:
    return WorkItem(
        item_id=item_id,
        label=label,
        category="Academic",
        description=f"Upload your {label.lower()}",
        content_ref=f"https://files.test/{item_id}.jpg" if uploaded else None,
        filename=f"{item_id}.jpg" if uploaded else None,
        verified=verified,
    )


class FakeWorkSource:
    """In-memory work source that records every call."""

    def __init__(
        self,
        subjects: list[SubjectRef] | None = None,
        listings: dict[str, WorkItemListing] | None = None,
    ) -> None:
        self.subjects = list(subjects or [])
        self.listings = dict(listings or {})
        self.list_subjects_error: Exception | None = None
        self.list_items_errors: dict[str, Exception] = {}
        self.report_error: Exception | None = None
        self.on_report: Callable[[str], None] | None = None
        self.list_subjects_calls = 0
        self.listed: list[str] = []
        self.reports: list[tuple[str, list[StatusUpdate]]] = []

    async def list_subjects(self) -> list[SubjectRef]:
        self.list_subjects_calls += 1
        if self.list_subjects_error is not None:
            raise self.list_subjects_error
        return list(self.subjects)

    async def list_work_items(self, subject_id: str) -> WorkItemListing:
        self.listed.append(subject_id)
        if subject_id in self.list_items_errors:
            raise self.list_items_errors[subject_id]
        return self.listings.get(subject_id, WorkItemListing(ok=False))

    async def report_status(self, subject_id: str, updates: list[StatusUpdate]) -> Any:
        self.reports.append((subject_id, list(updates)))
        if self.on_report is not None:
            self.on_report(subject_id)
        if self.report_error is not None:
            raise self.report_error
        return {"status": 1}


class FakeFetcher:
    def __init__(self) -> None:
        self.fetched: list[str] = []
        self.errors: dict[str, list[Exception]] = {}

    async def fetch(self, reference: str) -> FetchedContent:
        self.fetched.append(reference)
        pending = self.errors.get(reference)
        if pending:
            raise pending.pop(0)
        return FetchedContent(data=reference.encode("utf-8"), content_type="image/jpeg")


class FakeBackend:
    """Scripted backend: each label consumes its steps in order, then approves."""

    provider = "fake"

    def __init__(self, script: dict[str, list[Step]] | None = None) -> None:
        self.script = {label: list(steps) for label, steps in (script or {}).items()}
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        # Optional: block every call until the gate is set.
        self.gate: asyncio.Event | None = None
        self.entered: asyncio.Event | None = None

    async def verify(self, data: bytes, descriptor: ItemDescriptor) -> VerificationOutcome:
        self.calls.append(descriptor.label)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.entered is not None:
                self.entered.set()
            if self.gate is not None:
                await self.gate.wait()
            await asyncio.sleep(0)
            steps = self.script.get(descriptor.label)
            step = steps.pop(0) if steps else approved()
            if isinstance(step, Exception):
                raise step
            return step
        finally:
            self.in_flight -= 1


def sample_work_source() -> FakeWorkSource:
    return FakeWorkSource(
        subjects=[SubjectRef(subject_id="s1", name="Asha Rao")],
        listings={
            "s1": WorkItemListing(
                ok=True,
                items=[
                    make_item("10", "Passport Photo"),
                    make_item("11", "Class 12 Marksheet"),
                    make_item("12", "Aadhaar Card", uploaded=False),
                ],
            )
        },
    )


@pytest.fixture
def config() -> VerificationConfig:
    return VerificationConfig(
        concurrency=2,
        retry_attempts=3,
        retry_delay_ms=0,
        item_delay_ms=0,
        subject_delay_ms=0,
    )


@pytest.fixture
def work_source() -> FakeWorkSource:
    return sample_work_source()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def controller(
    work_source: FakeWorkSource,
    fetcher: FakeFetcher,
    backend: FakeBackend,
    config: VerificationConfig,
) -> RunController:
    return RunController(
        work_source=work_source,
        fetcher=fetcher,
        backend=backend,
        config=config,
        log_capacity=200,
        history_capacity=10,
    )


@pytest.fixture
def client(
    work_source: FakeWorkSource, fetcher: FakeFetcher, backend: FakeBackend
) -> TestClient:
    from admission_review.main import create_app

    settings = Settings(
        work_source_base_url="http://work-source.test",
        retry_delay_ms=0,
        item_delay_ms=0,
        subject_delay_ms=0,
        auto_start=False,
    )
    app = create_app(settings=settings, work_source=work_source, fetcher=fetcher, backend=backend)
    with TestClient(app) as test_client:
        yield test_client
