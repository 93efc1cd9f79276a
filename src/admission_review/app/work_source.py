"""Work source (subjects, document lists, status write-back) and content fetcher.

The orchestrator only depends on the two protocols below. ``AtlasWorkSource``
and ``HttpContentFetcher`` are the HTTP implementations used in production.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from .errors import WorkSourceError
from .models import FetchedContent, StatusUpdate, SubjectRef, WorkItem, WorkItemListing

logger = logging.getLogger(__name__)

# verify_status value the admissions API uses for "already verified".
VERIFIED_STATUS = "2"


class WorkSource(Protocol):
    async def list_subjects(self) -> list[SubjectRef]: ...

    async def list_work_items(self, subject_id: str) -> WorkItemListing: ...

    async def report_status(self, subject_id: str, updates: list[StatusUpdate]) -> Any: ...


class ContentFetcher(Protocol):
    async def fetch(self, reference: str) -> FetchedContent: ...


class AtlasWorkSource:
    """Admissions API client (student list, document list, status update)."""

    def __init__(
        self,
        *,
        base_url: str,
        token: str = "",
        timeout_s: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout_s = timeout_s
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout_s),
                headers={
                    "Authorization": f"Bearer {self.token}",
                    "Content-Type": "application/json",
                },
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def list_subjects(self) -> list[SubjectRef]:
        response = await self._http().get("/getStudentList")
        response.raise_for_status()
        return parse_subject_list(response.json())

    async def list_work_items(self, subject_id: str) -> WorkItemListing:
        response = await self._http().post("/documentList", json={"applnID": subject_id})
        response.raise_for_status()
        return parse_work_item_listing(response.json())

    async def report_status(self, subject_id: str, updates: list[StatusUpdate]) -> Any:
        payload = {
            "applnID": subject_id,
            "document_status": [
                {
                    "document_type_id": update.item_id,
                    "doc_ai_status": update.status,
                    "doc_ai_remark": update.remark,
                }
                for update in updates
            ],
        }
        response = await self._http().post("/documentStatusUpdate", json=payload)
        response.raise_for_status()
        return response.json()


class HttpContentFetcher:
    """Downloads uploaded documents by URL."""

    def __init__(
        self,
        *,
        timeout_s: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout_s = timeout_s
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_s),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch(self, reference: str) -> FetchedContent:
        response = await self._http().get(reference)
        response.raise_for_status()
        return FetchedContent(
            data=response.content,
            content_type=response.headers.get("content-type", "application/octet-stream"),
        )


def parse_subject_list(payload: Any) -> list[SubjectRef]:
    """Map the student-list response to subject refs, dropping rows without an id."""
    if not isinstance(payload, dict) or not payload.get("data"):
        raise WorkSourceError("Student list response carried no data")
    rows = payload["data"]
    if not isinstance(rows, list):
        rows = [rows]

    subjects: list[SubjectRef] = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        subject_id = row.get("applnID") or row.get("id") or row.get("application_id")
        if not subject_id:
            logger.warning("work_source event=subject_without_id row_keys=%s", sorted(row))
            continue
        full_name = " ".join(
            str(part) for part in (row.get("first_name"), row.get("last_name")) if part
        )
        name = full_name or row.get("name") or str(subject_id)
        subjects.append(SubjectRef(subject_id=str(subject_id), name=str(name)))
    return subjects


def parse_work_item_listing(payload: Any) -> WorkItemListing:
    """Map the document-list response; status != 1 or no document rows means no data."""
    if not isinstance(payload, dict) or payload.get("status") != 1:
        return WorkItemListing(ok=False)
    data = payload.get("data")
    rows = data.get("document_status") if isinstance(data, dict) else None
    if not rows or not isinstance(rows, list):
        return WorkItemListing(ok=False)
    items = [_work_item_from_row(row) for row in rows if isinstance(row, dict)]
    return WorkItemListing(ok=True, items=items)


def _work_item_from_row(row: dict[str, Any]) -> WorkItem:
    return WorkItem(
        item_id=str(row.get("document_type_id", "")),
        label=str(row.get("document_label") or "Unknown Document"),
        category=str(row.get("document_type_name") or ""),
        description=str(row.get("document_description") or ""),
        content_ref=row.get("file_url") or None,
        filename=row.get("filename") or None,
        required=str(row.get("document_is_required", "")) == "1",
        verified=str(row.get("verify_status", "")) == VERIFIED_STATUS,
    )
