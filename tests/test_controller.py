from __future__ import annotations

import asyncio
import logging

import pytest
from conftest import FakeBackend, FakeFetcher, FakeWorkSource, make_item

from admission_review.app.controller import RunController
from admission_review.app.errors import BusyError
from admission_review.app.models import RunSummary, SubjectRef, WorkItem, WorkItemListing


def three_subject_source() -> FakeWorkSource:
    return FakeWorkSource(
        subjects=[
            SubjectRef(subject_id=f"s{index}", name=f"Applicant {index}") for index in (1, 2, 3)
        ],
        listings={
            f"s{index}": WorkItemListing(ok=True, items=[make_item(f"{index}0", "Passport Photo")])
            for index in (1, 2, 3)
        },
    )


def test_batch_run_completes_and_is_summarized(controller: RunController) -> None:
    run = asyncio.run(controller.run_batch())

    assert run is not None
    assert run.status == "completed"
    assert run.kind == "batch"
    assert (run.total_subjects, run.processed, run.completed) == (1, 1, 1)
    assert (run.items_verified, run.approved, run.rejected, run.item_errors) == (2, 2, 0, 0)
    assert run.ended_at is not None
    assert controller.is_running is False
    assert controller.current_run is None

    summary = controller.history.latest()
    assert type(summary) is RunSummary
    assert "subjects" not in summary.model_dump()
    assert summary.run_id == run.run_id
    assert controller.subject_result("s1").status == "completed"


def test_stop_after_first_subject(controller: RunController) -> None:
    work_source = three_subject_source()
    controller.work_source = work_source
    work_source.on_report = lambda subject_id: controller.request_stop()

    run = asyncio.run(controller.run_batch())

    assert run.status == "stopped"
    assert run.processed == 1
    assert run.total_subjects == 3
    assert work_source.listed == ["s1"]
    assert controller.subject_result("s2") is None
    assert controller.stop_requested() is False
    assert any("stopped" in entry.message for entry in controller.logs.recent())


def test_subject_list_failure_ends_run_in_error(controller: RunController, work_source) -> None:
    work_source.list_subjects_error = RuntimeError("connection refused")

    run = asyncio.run(controller.run_batch())

    assert run.status == "error"
    assert run.processed == 0
    assert work_source.list_subjects_calls == controller.config.retry_attempts
    assert controller.subject_results() == []
    assert any(entry.level == "error" for entry in controller.logs.recent())
    assert controller.history.latest().status == "error"


def test_reentrant_calls_while_running(controller: RunController, backend: FakeBackend) -> None:
    async def scenario():
        backend.gate = asyncio.Event()
        backend.entered = asyncio.Event()
        first = asyncio.create_task(controller.run_batch())
        await backend.entered.wait()
        active_id = controller.current_run.run_id

        second = await controller.run_batch()
        with pytest.raises(BusyError):
            await controller.verify_subject("s1")
        still_active = controller.current_run.run_id

        backend.gate.set()
        finished = await first
        return active_id, second, still_active, finished

    active_id, second, still_active, finished = asyncio.run(scenario())

    assert second is None
    assert still_active == active_id
    assert finished.status == "completed"
    assert len(controller.history) == 1
    assert any(
        entry.level == "warn" and entry.message == "Batch already running, skipping"
        for entry in controller.logs.recent()
    )


def test_verify_subject_runs_single_kind(controller: RunController) -> None:
    run = asyncio.run(controller.verify_subject("s1"))

    assert run.kind == "single"
    assert run.status == "completed"
    assert run.subjects[0].subject_id == "s1"
    assert run.subjects[0].counts.approved == 2
    assert controller.run_detail(run.run_id).run_id == run.run_id


def test_run_ids_strictly_increase(controller: RunController) -> None:
    async def scenario():
        return [await controller.run_batch() for _ in range(3)]

    runs = asyncio.run(scenario())
    ids = [run.run_id for run in runs]

    assert len(set(ids)) == 3
    assert [int(run_id, 36) for run_id in ids] == sorted(int(run_id, 36) for run_id in ids)
    assert [summary.run_id for summary in controller.history.recent()] == ids[::-1]


def test_subject_delay_applies_between_subjects(config) -> None:
    sleeps: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    controller = RunController(
        work_source=three_subject_source(),
        fetcher=FakeFetcher(),
        backend=FakeBackend(),
        config=config.apply({"subject_delay_ms": 250}),
        sleep=fake_sleep,
    )

    asyncio.run(controller.run_batch())

    assert sleeps == [0.25, 0.25]


def test_verify_document_skips_without_content(controller: RunController, backend) -> None:
    item = WorkItem(item_id="adhoc", label="Photo")
    outcome = asyncio.run(controller.verify_document(item))

    assert outcome.status == "skipped"
    assert backend.calls == []


def test_log_is_mirrored_to_python_logging(
    controller: RunController, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.INFO, logger="admission_review"):
        controller.log("warn", "Scheduler already running")

    assert controller.logs.recent()[-1].message == "Scheduler already running"
    assert any(
        record.levelno == logging.WARNING and "Scheduler already running" in record.getMessage()
        for record in caplog.records
    )


def test_update_config_takes_effect_next_run(controller: RunController) -> None:
    updated = controller.update_config({"concurrency": 4})

    assert updated.concurrency == 4
    assert controller.engine_status().concurrency == 4
