"""FastAPI application wiring for the admission review orchestrator.

Beginner terms used in this file:
- Controller: owns runs, logs, history, config and the result cache.
- Scheduler: fires batch runs on a cron schedule and starts ad-hoc batches.
- Lifespan: startup/shutdown hook; initializes the scheduler and closes HTTP clients.
- app.state: where the controller and scheduler live so route handlers can reach them.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Body, FastAPI, HTTPException, Query, Request
from fastapi.responses import HTMLResponse
from pydantic import BaseModel, Field

from .app.backend import VerificationBackend, build_backend_from_settings
from .app.controller import RunController
from .app.errors import BusyError, ConfigUpdateError, InvalidScheduleError, WorkSourceError
from .app.models import (
    LogEntry,
    Run,
    RunSummary,
    StatusSnapshot,
    SubjectRef,
    SubjectResult,
    SubjectResultSummary,
    VerificationOutcome,
    WorkItem,
    WorkItemListing,
)
from .app.scheduler import BatchScheduler
from .app.settings import Settings, VerificationConfig, get_settings
from .app.ui import render_homepage
from .app.work_source import AtlasWorkSource, ContentFetcher, HttpContentFetcher, WorkSource

logger = logging.getLogger(__name__)


class DocumentVerifyRequest(BaseModel):
    file_url: str = Field(min_length=1)
    label: str = "Document"
    category: str = ""
    description: str = ""
    filename: str | None = None


class SubjectList(BaseModel):
    subjects: list[SubjectRef]


class ResultList(BaseModel):
    results: list[SubjectResultSummary]


class LogList(BaseModel):
    logs: list[LogEntry]


class ActionResponse(BaseModel):
    ok: bool
    message: str


def create_app(
    *,
    settings: Settings | None = None,
    work_source: WorkSource | None = None,
    fetcher: ContentFetcher | None = None,
    backend: VerificationBackend | None = None,
    scheduler: BatchScheduler | None = None,
) -> FastAPI:
    """Application factory; collaborators can be injected for tests."""
    settings = settings or get_settings()
    if scheduler is None:
        controller = RunController(
            work_source=work_source
            or AtlasWorkSource(
                base_url=settings.work_source_base_url,
                token=settings.work_source_token,
                timeout_s=settings.work_source_timeout_s,
            ),
            fetcher=fetcher or HttpContentFetcher(timeout_s=settings.content_timeout_s),
            backend=backend or build_backend_from_settings(settings),
            config=settings.verification_config(),
            log_capacity=settings.log_capacity,
            history_capacity=settings.history_capacity,
        )
        scheduler = BatchScheduler(controller, initial_run_delay_s=settings.initial_run_delay_s)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.scheduler.init()
        yield
        app.state.scheduler.shutdown()
        ctl: RunController = app.state.controller
        for collaborator in (ctl.work_source, ctl.fetcher, ctl.backend):
            aclose = getattr(collaborator, "aclose", None)
            if aclose is not None:
                await aclose()
        logger.info("app event=shutdown service=%s", settings.app_name)

    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.scheduler = scheduler
    app.state.controller = scheduler.controller

    def _scheduler(request: Request) -> BatchScheduler:
        return request.app.state.scheduler

    def _controller(request: Request) -> RunController:
        return request.app.state.controller

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "service": settings.app_name}

    @app.get("/", response_class=HTMLResponse)
    def home() -> str:
        return render_homepage()

    # Every handler below is async so controller state is only touched on the event loop.

    @app.get("/verification/status", response_model=StatusSnapshot)
    async def status(request: Request) -> StatusSnapshot:
        return _scheduler(request).snapshot()

    @app.get("/verification/runs/{run_id}", response_model=None)
    async def get_run(run_id: str, request: Request) -> Run | RunSummary:
        run = _controller(request).run_detail(run_id)
        if run is None:
            raise HTTPException(status_code=404, detail="Run not found")
        return run

    @app.get("/verification/logs", response_model=LogList)
    async def logs(request: Request, limit: int = Query(default=100, ge=1, le=1000)) -> LogList:
        return LogList(logs=_controller(request).logs.recent(limit))

    @app.get("/verification/config", response_model=VerificationConfig)
    async def get_config(request: Request) -> VerificationConfig:
        return _controller(request).config

    @app.put("/verification/config", response_model=VerificationConfig)
    async def update_config(
        request: Request, updates: dict[str, Any] = Body(...)
    ) -> VerificationConfig:
        try:
            return _scheduler(request).update_config(updates)
        except (InvalidScheduleError, ConfigUpdateError) as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc

    @app.get("/verification/results", response_model=ResultList)
    async def results(request: Request) -> ResultList:
        return ResultList(results=_controller(request).subject_results())

    @app.get("/verification/results/{subject_id}", response_model=SubjectResult)
    async def result(subject_id: str, request: Request) -> SubjectResult:
        cached = _controller(request).subject_result(subject_id)
        if cached is None:
            raise HTTPException(status_code=404, detail="No verification result for subject")
        return cached

    @app.post("/verification/scheduler/start", response_model=ActionResponse)
    async def start_scheduler(request: Request) -> ActionResponse:
        try:
            started = _scheduler(request).start()
        except InvalidScheduleError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        message = "Scheduler started" if started else "Scheduler already running"
        return ActionResponse(ok=started, message=message)

    @app.post("/verification/scheduler/stop", response_model=ActionResponse)
    async def stop_scheduler(request: Request) -> ActionResponse:
        scheduler = _scheduler(request)
        was_active = scheduler.active
        stopped = scheduler.stop()
        if was_active:
            message = "Scheduler stopped"
        elif stopped:
            message = "Stop signal sent to running batch"
        else:
            message = "Scheduler is not running"
        return ActionResponse(ok=stopped, message=message)

    @app.post("/verification/run", response_model=ActionResponse, status_code=202)
    async def run_now(request: Request) -> ActionResponse:
        task = _scheduler(request).trigger_batch()
        if task is None:
            raise HTTPException(status_code=409, detail="A batch job is already running")
        return ActionResponse(ok=True, message="Batch verification started")

    @app.post("/verification/subjects/{subject_id}/verify", response_model=Run)
    async def verify_subject(subject_id: str, request: Request) -> Run:
        try:
            return await _controller(request).verify_subject(subject_id)
        except BusyError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc

    @app.get("/verification/subjects", response_model=SubjectList)
    async def subjects(request: Request) -> SubjectList:
        try:
            found = await _controller(request).list_subjects()
        except Exception as exc:  # noqa: BLE001
            raise HTTPException(status_code=502, detail=f"Work source error: {exc}") from exc
        return SubjectList(subjects=found)

    @app.get("/verification/subjects/{subject_id}/items", response_model=WorkItemListing)
    async def subject_items(subject_id: str, request: Request) -> WorkItemListing:
        try:
            return await _controller(request).list_work_items(subject_id)
        except WorkSourceError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except Exception as exc:  # noqa: BLE001
            raise HTTPException(status_code=502, detail=f"Work source error: {exc}") from exc

    @app.post("/verification/documents/verify", response_model=VerificationOutcome)
    async def verify_document(
        payload: DocumentVerifyRequest, request: Request
    ) -> VerificationOutcome:
        item = WorkItem(
            item_id="adhoc",
            label=payload.label,
            category=payload.category,
            description=payload.description,
            content_ref=payload.file_url,
            filename=payload.filename,
        )
        try:
            return await _controller(request).verify_document(item)
        except Exception as exc:  # noqa: BLE001
            raise HTTPException(status_code=502, detail=f"Verification failed: {exc}") from exc

    return app


# Module-level app for `uvicorn admission_review.main:app`.
app = create_app()
