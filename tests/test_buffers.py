from __future__ import annotations

import pytest

from admission_review.app.buffers import LogBuffer, ResultCache, RunHistory
from admission_review.app.models import RunSummary, SubjectResult


def test_log_buffer_evicts_oldest_first() -> None:
    buffer = LogBuffer(3)
    for index in range(1, 5):
        buffer.append("info", f"event {index}")

    assert len(buffer) == 3
    assert [entry.message for entry in buffer.recent()] == ["event 2", "event 3", "event 4"]
    assert [entry.message for entry in buffer.recent(2)] == ["event 3", "event 4"]
    assert buffer.recent(0) == []


def test_log_buffer_keeps_level_and_data() -> None:
    buffer = LogBuffer(5)
    entry = buffer.append("warn", "slow response", {"elapsed_ms": 950})

    assert entry.level == "warn"
    assert buffer.recent()[0].data == {"elapsed_ms": 950}


def test_run_history_is_bounded_and_newest_first() -> None:
    history = RunHistory(2)
    for run_id in ("a1", "a2", "a3"):
        history.append(RunSummary(run_id=run_id, status="completed"))

    assert len(history) == 2
    assert [run.run_id for run in history.recent()] == ["a3", "a2"]
    assert history.latest().run_id == "a3"
    assert history.find("a1") is None
    assert history.find("a2").run_id == "a2"


@pytest.mark.parametrize("factory", [LogBuffer, RunHistory])
def test_capacity_must_be_positive(factory) -> None:
    with pytest.raises(ValueError):
        factory(0)


def test_result_cache_overwrites_per_subject() -> None:
    cache = ResultCache()
    cache.put(SubjectResult(subject_id="s1", subject_name="Asha", status="partial"))
    cache.put(SubjectResult(subject_id="s1", subject_name="Asha", status="completed"))
    cache.put(SubjectResult(subject_id="s2", subject_name="Ravi", status="skipped"))

    assert len(cache) == 2
    assert cache.get("s1").status == "completed"
    assert cache.get("missing") is None
    assert {summary.subject_id for summary in cache.summaries()} == {"s1", "s2"}
