"""Application settings and the runtime verification config."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigUpdateError

PROJECT_ROOT = Path(__file__).resolve().parents[3]

DEFAULT_CRON_SCHEDULE = "0 */2 * * *"

# auto_start only matters at process start, so it is not updatable.
UPDATABLE_CONFIG_FIELDS = frozenset(
    {
        "cron_schedule",
        "concurrency",
        "retry_attempts",
        "retry_delay_ms",
        "item_delay_ms",
        "subject_delay_ms",
        "skip_already_verified",
    }
)


class VerificationConfig(BaseModel):
    """Knobs read at the start of every run or scheduler tick.

    The model is frozen: an update produces a new instance, so a run that
    already took its snapshot never sees a half-applied change.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    cron_schedule: str = DEFAULT_CRON_SCHEDULE
    concurrency: int = Field(default=2, ge=1)
    retry_attempts: int = Field(default=3, ge=1)
    retry_delay_ms: int = Field(default=2000, ge=0)
    item_delay_ms: int = Field(default=500, ge=0)
    subject_delay_ms: int = Field(default=1000, ge=0)
    skip_already_verified: bool = True
    auto_start: bool = False

    def apply(self, updates: dict[str, Any]) -> VerificationConfig:
        """Return a new config with whitelisted updates applied."""
        rejected = sorted(set(updates) - UPDATABLE_CONFIG_FIELDS)
        if rejected:
            raise ConfigUpdateError(f"Unknown or read-only config fields: {', '.join(rejected)}")
        merged = self.model_dump()
        merged.update(updates)
        try:
            return VerificationConfig.model_validate(merged)
        except ValidationError as exc:
            raise ConfigUpdateError(str(exc)) from exc


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "admission-review"

    work_source_base_url: str = "https://www.atlasskilltech.app/admissions/api"
    work_source_token: str = ""
    work_source_timeout_s: float = Field(default=30.0, gt=0)
    content_timeout_s: float = Field(default=60.0, gt=0)

    backend_provider: Literal["claude", "openai"] = "claude"
    backend_timeout_s: float = Field(default=120.0, gt=0)
    backend_max_tokens: int = Field(default=1024, ge=1)
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-20250514"
    anthropic_base_url: str = "https://api.anthropic.com"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o"
    openai_base_url: str = "https://api.openai.com/v1"

    cron_schedule: str = DEFAULT_CRON_SCHEDULE
    concurrency: int = Field(default=2, ge=1)
    retry_attempts: int = Field(default=3, ge=1)
    retry_delay_ms: int = Field(default=2000, ge=0)
    item_delay_ms: int = Field(default=500, ge=0)
    subject_delay_ms: int = Field(default=1000, ge=0)
    skip_already_verified: bool = True
    auto_start: bool = False
    initial_run_delay_s: float = Field(default=10.0, ge=0)

    log_capacity: int = Field(default=500, ge=1)
    history_capacity: int = Field(default=50, ge=1)

    model_config = SettingsConfigDict(
        env_prefix="ADMISSION_REVIEW_",
        extra="ignore",
        env_file=(PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.local"),
        env_file_encoding="utf-8",
    )

    def verification_config(self) -> VerificationConfig:
        return VerificationConfig(
            cron_schedule=self.cron_schedule,
            concurrency=self.concurrency,
            retry_attempts=self.retry_attempts,
            retry_delay_ms=self.retry_delay_ms,
            item_delay_ms=self.item_delay_ms,
            subject_delay_ms=self.subject_delay_ms,
            skip_already_verified=self.skip_already_verified,
            auto_start=self.auto_start,
        )

    def resolved_anthropic_api_key(self) -> str:
        return self.anthropic_api_key or os.getenv("ANTHROPIC_API_KEY", "")

    def resolved_openai_api_key(self) -> str:
        return self.openai_api_key or os.getenv("OPENAI_API_KEY", "")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
