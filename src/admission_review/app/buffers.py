"""Fixed-capacity log and run-history buffers, plus the per-subject result cache."""

from __future__ import annotations

from collections import deque
from typing import Any

from .models import LogEntry, LogLevel, RunSummary, SubjectResult, SubjectResultSummary


class LogBuffer:
    """Rolling buffer of diagnostic events; the oldest entry is evicted first."""

    def __init__(self, capacity: int = 500) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._entries: deque[LogEntry] = deque(maxlen=capacity)

    def append(self, level: LogLevel, message: str, data: dict[str, Any] | None = None) -> LogEntry:
        entry = LogEntry(level=level, message=message, data=data)
        self._entries.append(entry)
        return entry

    def recent(self, limit: int = 100) -> list[LogEntry]:
        """Most recent entries, oldest first."""
        if limit <= 0:
            return []
        return list(self._entries)[-limit:]

    def __len__(self) -> int:
        return len(self._entries)


class RunHistory:
    """Finalized run summaries, bounded and kept in chronological order."""

    def __init__(self, capacity: int = 50) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._runs: deque[RunSummary] = deque(maxlen=capacity)

    def append(self, summary: RunSummary) -> None:
        self._runs.append(summary)

    def recent(self, limit: int = 10) -> list[RunSummary]:
        """Most recent summaries, newest first."""
        if limit <= 0:
            return []
        return list(reversed(self._runs))[:limit]

    def latest(self) -> RunSummary | None:
        return self._runs[-1] if self._runs else None

    def find(self, run_id: str) -> RunSummary | None:
        return next((run for run in self._runs if run.run_id == run_id), None)

    def __len__(self) -> int:
        return len(self._runs)


class ResultCache:
    """Last known result per subject; a newer run simply overwrites the entry."""

    def __init__(self) -> None:
        self._results: dict[str, SubjectResult] = {}

    def put(self, result: SubjectResult) -> None:
        self._results[str(result.subject_id)] = result

    def get(self, subject_id: str) -> SubjectResult | None:
        return self._results.get(str(subject_id))

    def summaries(self) -> list[SubjectResultSummary]:
        return [SubjectResultSummary.from_result(result) for result in self._results.values()]

    def __len__(self) -> int:
        return len(self._results)
