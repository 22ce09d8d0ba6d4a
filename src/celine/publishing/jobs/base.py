from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from celine.publishing.config.settings import Settings
from celine.publishing.errors import ErrorKind, PublishingError, is_retryable

if TYPE_CHECKING:
    from celine.publishing.db.models import Job
    from celine.publishing.social.models import PublishResult


@dataclass(frozen=True)
class JobOutcome:
    """What a handler reports back to the dispatcher."""

    ok: bool
    result: dict[str, Any] | None = None
    error: ErrorKind | None = None
    message: str | None = None

    @classmethod
    def success(cls, result: dict[str, Any] | None = None) -> JobOutcome:
        return cls(ok=True, result=result or {})

    @classmethod
    def failure(cls, kind: ErrorKind, message: str = "") -> JobOutcome:
        return cls(ok=False, error=kind, message=message or kind.value)

    @classmethod
    def from_exception(cls, exc: BaseException) -> JobOutcome:
        if isinstance(exc, PublishingError):
            return cls.failure(exc.kind, exc.message)
        if isinstance(exc, httpx.TransportError):
            return cls.failure(ErrorKind.network_error, str(exc) or type(exc).__name__)
        return cls.failure(ErrorKind.publish_failed, str(exc) or type(exc).__name__)

    @classmethod
    def from_publish_result(cls, res: PublishResult) -> JobOutcome:
        if res.ok:
            return cls.success(res.as_dict())
        return cls.failure(res.error or ErrorKind.publish_failed, res.message or "")

    @property
    def retryable(self) -> bool:
        return not self.ok and self.error is not None and is_retryable(self.error)

    def describe(self) -> str:
        if self.ok:
            return "ok"
        kind = self.error.value if self.error else ErrorKind.publish_failed.value
        return f"{kind}: {self.message}"


@dataclass
class HandlerContext:
    """Everything a handler may touch.

    Handlers open their own short sessions from `sessions`; no session or
    transaction is held while they wait on the network.
    """

    sessions: async_sessionmaker[AsyncSession]
    http: httpx.AsyncClient
    settings: Settings
    job: Job
    cancel: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def last_attempt(self) -> bool:
        # attempts is incremented after the handler returns
        return self.job.attempts + 1 >= self.job.max_attempts


Handler = Callable[[HandlerContext, dict[str, Any]], Awaitable[JobOutcome]]
