from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Callable

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from celine.publishing.config.settings import Settings
from celine.publishing.db.models import (
    Base,
    Job,
    PublishedPost,
    SocialConnection,
    new_id,
    utc_now,
)
from celine.publishing.jobs.base import HandlerContext

GRAPH = "https://graph.test/v22.0"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        WORKER_SECRET="worker-secret",
        CRON_SECRET="cron-secret",
        TOKEN_ENCRYPTION_KEY="",
        RETRY_BACKOFF_BASE_SECONDS=0,
        GRAPH_API_BASE_URL="https://graph.test",
        GRAPH_API_VERSION="v22.0",
        INSTAGRAM_POLL_INTERVAL_SECONDS=0,
        INSTAGRAM_POLL_MAX_ATTEMPTS=3,
        SSE_POLL_SECONDS=0.01,
        SSE_MAX_STREAM_SECONDS=2,
    )


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'publishing.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def sessions(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(sessions):
    async with sessions() as session:
        yield session


# ---------------------------------------------------------------------------
# Graph API double
# ---------------------------------------------------------------------------


class GraphRecorder:
    """Routes requests to canned responses and keeps every request it saw."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.routes: list[tuple[str, str, Callable[[httpx.Request], httpx.Response]]] = []

    def on(self, method: str, path_suffix: str, response: Any) -> None:
        """Register a reply. `response` is a dict, a list of dicts (one per call) or a callable."""
        if callable(response):
            reply = response
        elif isinstance(response, list):
            queue = list(response)

            def reply(request: httpx.Request) -> httpx.Response:
                item = queue.pop(0) if len(queue) > 1 else queue[0]
                return httpx.Response(200, json=item)

        else:

            def reply(request: httpx.Request) -> httpx.Response:
                return httpx.Response(200, json=response)

        self.routes.append((method, path_suffix, reply))

    def calls(self, method: str, path_suffix: str) -> list[httpx.Request]:
        return [
            r
            for r in self.requests
            if r.method == method and r.url.path.endswith(path_suffix)
        ]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for method, suffix, reply in self.routes:
            if request.method == method and request.url.path.endswith(suffix):
                return reply(request)
        return httpx.Response(404, json={"error": {"message": "no route", "code": 803}})


def body(request: httpx.Request) -> dict[str, Any]:
    return json.loads(request.content or b"{}")


@pytest.fixture
def graph() -> GraphRecorder:
    return GraphRecorder()


@pytest.fixture
async def http(graph):
    async with httpx.AsyncClient(transport=httpx.MockTransport(graph)) as client:
        yield client


# ---------------------------------------------------------------------------
# Row factories
# ---------------------------------------------------------------------------


async def add_connection(
    db: AsyncSession,
    *,
    user_id: str = "user-1",
    platform: str = "instagram",
    account_id: str = "acct-1",
    access_token: str = "page-token",
    token_expires_at: datetime | None = None,
    status: str = "active",
    **extra: Any,
) -> SocialConnection:
    conn = SocialConnection(
        id=new_id(),
        user_id=user_id,
        platform=platform,
        account_id=account_id,
        access_token=access_token,
        token_expires_at=token_expires_at,
        status=status,
        **extra,
    )
    db.add(conn)
    await db.commit()
    return conn


async def add_post(
    db: AsyncSession,
    *,
    user_id: str = "user-1",
    platform: str = "instagram",
    status: str = "pending",
    media_urls: list[str] | None = None,
    caption: str | None = "hello",
    scheduled_for: datetime | None = None,
    **extra: Any,
) -> PublishedPost:
    post = PublishedPost(
        id=new_id(),
        user_id=user_id,
        platform=platform,
        status=status,
        media_urls=["https://cdn.test/a.jpg"] if media_urls is None else media_urls,
        caption=caption,
        scheduled_for=scheduled_for,
        **extra,
    )
    db.add(post)
    await db.commit()
    return post


def make_job(**overrides: Any) -> Job:
    values: dict[str, Any] = {
        "id": new_id(),
        "user_id": "user-1",
        "type": "social_publish_instagram",
        "payload": {},
        "status": "pending",
        "priority": 0,
        "attempts": 0,
        "max_attempts": 3,
        "created_at": utc_now(),
    }
    values.update(overrides)
    return Job(**values)


@pytest.fixture
def make_ctx(sessions, http, settings):
    def _make(job: Job | None = None) -> HandlerContext:
        return HandlerContext(
            sessions=sessions,
            http=http,
            settings=settings,
            job=job or make_job(),
        )

    return _make
