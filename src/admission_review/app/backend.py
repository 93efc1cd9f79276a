"""Verification backends: vision-model adapters and the strict response decode."""

from __future__ import annotations

import base64
import json
import logging
import re
from typing import Any, Literal, Protocol

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .models import ItemDescriptor, VerificationOutcome
from .settings import Settings

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a document verification assistant for an educational admissions system.

Verify each uploaded document against its expected type and description. Check:
1. DOCUMENT TYPE MATCH: does the document match the expected type (marksheet, certificate, ID proof, photograph)?
2. DESCRIPTION COMPLIANCE: does it satisfy the stated requirements?
3. LEGIBILITY: is it clear, readable, not blurry or cut off?
4. AUTHENTICITY INDICATORS: proper formatting, stamps and signatures where expected?
5. COMPLETENESS: is the whole document visible?

Respond ONLY with a JSON object (no markdown, no code fences):
{
  "status": "approve" or "reject",
  "confidence": 0.0 to 1.0,
  "remark": "brief explanation",
  "issues": ["specific issues found, if any"],
  "extracted_data": {"optional key": "value pairs read from the document"}
}

Approve only when the document matches the type, meets the description, is legible and looks genuine.
Photographs should be passport-size with a plain background. Marksheets and certificates should look
like official academic documents. ID proofs should look like valid government-issued documents.
Affidavits and undertakings should be on stamp paper and signed."""

_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)

_EXTENSION_MEDIA_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "pdf": "application/pdf",
}


class VerificationBackend(Protocol):
    provider: str

    async def verify(self, data: bytes, descriptor: ItemDescriptor) -> VerificationOutcome: ...


class BackendVerdict(BaseModel):
    """Shape the model must return; anything else is treated as a rejection."""

    model_config = ConfigDict(extra="ignore")

    status: Literal["approve", "reject"]
    confidence: float = Field(ge=0.0, le=1.0)
    remark: str = Field(min_length=1)
    issues: list[str] = Field(default_factory=list)
    extracted_data: dict[str, Any] | None = None


def decode_outcome(text: Any) -> VerificationOutcome:
    """Validate raw model output; never raises."""
    if not isinstance(text, str) or not text.strip():
        return _unparseable("empty response")
    cleaned = _FENCE_PATTERN.sub("", text.strip())
    try:
        raw = json.loads(cleaned)
    except json.JSONDecodeError:
        return _unparseable(text.strip()[:200])
    try:
        verdict = BackendVerdict.model_validate(raw)
    except ValidationError as exc:
        fields = sorted({".".join(str(part) for part in error["loc"]) for error in exc.errors()})
        return _unparseable(f"invalid fields: {', '.join(fields) or 'root'}")
    return VerificationOutcome(
        status="approved" if verdict.status == "approve" else "rejected",
        confidence=verdict.confidence,
        remark=verdict.remark,
        issues=verdict.issues,
        extracted_data=verdict.extracted_data or {},
    )


def _unparseable(detail: str) -> VerificationOutcome:
    return VerificationOutcome(
        status="rejected",
        confidence=0.0,
        remark=f"AI response parsing failed: {detail}",
        issues=["Could not parse AI verification response"],
    )


def resolve_media_type(filename: str | None, content_type: str | None) -> str:
    """Pick the media type sent to the model; header first, then file extension."""
    if content_type and content_type != "application/octet-stream":
        lowered = content_type.lower()
        for marker, media_type in (
            ("jpeg", "image/jpeg"),
            ("jpg", "image/jpeg"),
            ("png", "image/png"),
            ("gif", "image/gif"),
            ("webp", "image/webp"),
            ("pdf", "application/pdf"),
        ):
            if marker in lowered:
                return media_type
    extension = filename.rsplit(".", 1)[-1].lower() if filename and "." in filename else ""
    return _EXTENSION_MEDIA_TYPES.get(extension, "image/jpeg")


def build_user_prompt(descriptor: ItemDescriptor) -> str:
    lines = [
        "Please verify the following uploaded document:",
        "",
        f"Expected Document Type: {descriptor.label}",
        f"Document Category: {descriptor.category}",
    ]
    if descriptor.description.strip():
        lines.append(f"Requirements/Description: {descriptor.description}")
    lines.append("")
    lines.append(
        "Analyze the attached document and determine if it matches the expected type "
        "and satisfies the requirements described above. Respond with a JSON object."
    )
    return "\n".join(lines)


class _HttpBackend:
    provider = "unknown"

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        base_url: str,
        timeout_s: float = 120.0,
        max_tokens: int = 1024,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.max_tokens = max_tokens
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_s),
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _post(self, url: str, payload: dict[str, Any], headers: dict[str, str]) -> Any:
        response = await self._http().post(url, json=payload, headers=headers)
        response.raise_for_status()
        try:
            return response.json()
        except ValueError:
            return None


class OpenAIVisionBackend(_HttpBackend):
    """Chat completions with the document attached as a data URL."""

    provider = "openai"

    def build_payload(self, data: bytes, descriptor: ItemDescriptor) -> dict[str, Any]:
        media_type = resolve_media_type(descriptor.filename, descriptor.content_type)
        encoded = base64.b64encode(data).decode("ascii")
        data_url = f"data:{media_type};base64,{encoded}"
        if media_type == "application/pdf":
            attachment: dict[str, Any] = {
                "type": "file",
                "file": {"filename": descriptor.filename or "document.pdf", "file_data": data_url},
            }
        else:
            attachment = {"type": "image_url", "image_url": {"url": data_url, "detail": "high"}}
        return {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        attachment,
                        {"type": "text", "text": build_user_prompt(descriptor)},
                    ],
                },
            ],
        }

    async def verify(self, data: bytes, descriptor: ItemDescriptor) -> VerificationOutcome:
        body = await self._post(
            f"{self.base_url}/chat/completions",
            self.build_payload(data, descriptor),
            {"Authorization": f"Bearer {self.api_key}"},
        )
        return decode_outcome(self.extract_text(body))

    @staticmethod
    def extract_text(body: Any) -> str | None:
        if not isinstance(body, dict):
            return None
        choices = body.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            return None
        message = choices[0].get("message")
        content = message.get("content") if isinstance(message, dict) else None
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            segments = [
                item["text"]
                for item in content
                if isinstance(item, dict) and isinstance(item.get("text"), str)
            ]
            return "".join(segments).strip() or None
        return None


class AnthropicVisionBackend(_HttpBackend):
    """Messages API with an image or PDF document block."""

    provider = "claude"
    api_version = "2023-06-01"

    def build_payload(self, data: bytes, descriptor: ItemDescriptor) -> dict[str, Any]:
        media_type = resolve_media_type(descriptor.filename, descriptor.content_type)
        source = {
            "type": "base64",
            "media_type": media_type,
            "data": base64.b64encode(data).decode("ascii"),
        }
        block_type = "document" if media_type == "application/pdf" else "image"
        return {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": SYSTEM_PROMPT,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": block_type, "source": source},
                        {"type": "text", "text": build_user_prompt(descriptor)},
                    ],
                }
            ],
        }

    async def verify(self, data: bytes, descriptor: ItemDescriptor) -> VerificationOutcome:
        body = await self._post(
            f"{self.base_url}/v1/messages",
            self.build_payload(data, descriptor),
            {"x-api-key": self.api_key, "anthropic-version": self.api_version},
        )
        return decode_outcome(self.extract_text(body))

    @staticmethod
    def extract_text(body: Any) -> str | None:
        if not isinstance(body, dict):
            return None
        blocks = body.get("content")
        if not isinstance(blocks, list):
            return None
        texts = [
            block["text"]
            for block in blocks
            if isinstance(block, dict)
            and block.get("type") == "text"
            and isinstance(block.get("text"), str)
        ]
        return "".join(texts).strip() or None


def build_backend_from_settings(settings: Settings) -> VerificationBackend:
    if settings.backend_provider == "openai":
        api_key = settings.resolved_openai_api_key()
        backend: _HttpBackend = OpenAIVisionBackend(
            api_key=api_key,
            model=settings.openai_model,
            base_url=settings.openai_base_url,
            timeout_s=settings.backend_timeout_s,
            max_tokens=settings.backend_max_tokens,
        )
    else:
        api_key = settings.resolved_anthropic_api_key()
        backend = AnthropicVisionBackend(
            api_key=api_key,
            model=settings.anthropic_model,
            base_url=settings.anthropic_base_url,
            timeout_s=settings.backend_timeout_s,
            max_tokens=settings.backend_max_tokens,
        )
    if not api_key:
        logger.warning(
            "backend event=missing_api_key provider=%s; verification calls will fail with 401",
            backend.provider,
        )
    return backend
