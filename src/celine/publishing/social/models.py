from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from celine.publishing.errors import ErrorKind, is_retryable


class Platform(str, Enum):
    instagram = "instagram"
    facebook = "facebook"


class PostStatus(str, Enum):
    scheduled = "scheduled"
    pending = "pending"
    processing = "processing"
    published = "published"
    failed = "failed"
    cancelled = "cancelled"


class ConnectionStatus(str, Enum):
    active = "active"
    expired = "expired"
    revoked = "revoked"
    error = "error"


class ContainerStatus(str, Enum):
    EXPIRED = "EXPIRED"
    ERROR = "ERROR"
    FINISHED = "FINISHED"
    IN_PROGRESS = "IN_PROGRESS"
    PUBLISHED = "PUBLISHED"


@dataclass(frozen=True)
class PublishResult:
    """Adapter result. Expected platform failures come back here, not as exceptions."""

    status: PostStatus
    platform_post_id: str | None = None
    platform_post_url: str | None = None
    error: ErrorKind | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def retryable(self) -> bool:
        return self.error is not None and is_retryable(self.error)

    @classmethod
    def failed(cls, kind: ErrorKind, message: str) -> PublishResult:
        return cls(status=PostStatus.failed, error=kind, message=message)

    def as_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "platform_post_id": self.platform_post_id,
            "platform_post_url": self.platform_post_url,
        }


@dataclass(frozen=True)
class MetricsResult:
    like_count: int | None = None
    comments_count: int | None = None
    shares_count: int | None = None
    saved_count: int | None = None
    impressions: int | None = None
    reach: int | None = None
    engagement_rate: float | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {
            "like_count": self.like_count,
            "comments_count": self.comments_count,
            "shares_count": self.shares_count,
            "saved_count": self.saved_count,
            "impressions": self.impressions,
            "reach": self.reach,
            "engagement_rate": self.engagement_rate,
        }
