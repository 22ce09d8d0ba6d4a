"""Shared Pydantic schemas for the publishing API.

All request bodies and response models live here so they appear correctly
in the FastAPI/OpenAPI docs and can be reused across routers.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from celine.publishing.social.models import Platform


# ---------------------------------------------------------------------------
# Common
# ---------------------------------------------------------------------------


class StatusResponse(BaseModel):
    """Generic operation acknowledgement."""

    status: str = Field(..., examples=["ok"])


class ErrorResponse(BaseModel):
    detail: str
    code: str = Field(..., examples=["validation"])


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


class JobOut(BaseModel):
    id: str = Field(..., description="Job ID (hex UUID)")
    user_id: str
    type: str
    status: str = Field(..., description="pending | processing | completed | failed")
    priority: int
    attempts: int
    max_attempts: int
    scheduled_for: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    result: dict[str, Any] | None = None
    error: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Workers / cron
# ---------------------------------------------------------------------------


class TickOut(BaseModel):
    processed: bool
    job_id: str | None = None
    type: str | None = None
    status: str | None = None
    attempt: int | None = None
    error: str | None = None
    retry_in_seconds: float | None = None
    duration_ms: float = 0.0


class WorkerRunResponse(BaseModel):
    success: bool = True
    message: str | None = Field(None, examples=["No jobs to process"])
    processed: int = 0
    jobs: list[TickOut] = Field(default_factory=list)


class QueueCountsResponse(BaseModel):
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0


class SweepResponse(BaseModel):
    success: bool = True
    published: int


class EnqueueResponse(BaseModel):
    success: bool = True
    job_id: str


class RefreshError(BaseModel):
    connection_id: str
    error: str


class RefreshResponse(BaseModel):
    success: bool = True
    processed: int = 0
    refreshed: int = 0
    updated_page_tokens: int = 0
    skipped: int = 0
    errors: list[RefreshError] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Published posts
# ---------------------------------------------------------------------------


class PublishRequest(BaseModel):
    platform: Platform
    media_urls: list[str] = Field(..., min_length=1, max_length=10)
    caption: str | None = Field(None, max_length=2200)
    scheduled_for: datetime | None = Field(
        None, description="Omit to publish as soon as a worker picks the job up"
    )


class PublishedPostOut(BaseModel):
    id: str
    user_id: str
    platform: str
    status: str = Field(
        ..., description="scheduled | pending | processing | published | failed | cancelled"
    )
    platform_post_id: str | None = None
    platform_post_url: str | None = None
    caption: str | None = None
    media_urls: list[str] = Field(default_factory=list)
    scheduled_for: datetime | None = None
    published_at: datetime | None = None
    failure_reason: str | None = None
    metrics: dict[str, Any] | None = None
    metrics_last_fetched_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class PublishResponse(BaseModel):
    post: PublishedPostOut
    job_id: str
