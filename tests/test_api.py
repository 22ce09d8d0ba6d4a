from __future__ import annotations

import asyncio
from datetime import timedelta
from types import SimpleNamespace

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from celine.publishing.db.models import Base, utc_now
from celine.publishing.jobs.signal import NullSignal
from celine.publishing.main import create_app
from celine.publishing.security import auth

from conftest import add_connection

WORKER = {"Authorization": "Bearer worker-secret"}
CRON = {"Authorization": "Bearer cron-secret"}


def as_user(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {user_id}"}


class FakeJwtUser:
    @classmethod
    def from_token(cls, header, oidc):
        token = header.split()[-1]
        if token == "bad":
            raise ValueError("signature mismatch")
        return SimpleNamespace(sub=token)


@pytest.fixture
def api_sessions(tmp_path):
    # NullPool: the app runs on the TestClient loop, seeding on asyncio.run
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'api.db'}", poolclass=NullPool
    )

    async def setup():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(setup())
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def seed(api_sessions):
    def _seed(**kw):
        async def run():
            async with api_sessions() as db:
                await add_connection(db, **kw)

        asyncio.run(run())

    return _seed


@pytest.fixture
def client(api_sessions, settings, graph, monkeypatch):
    monkeypatch.setattr(auth, "JwtUser", FakeJwtUser)
    app = create_app(
        settings=settings,
        sessions=api_sessions,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(graph)),
        signal=NullSignal(),
    )
    with TestClient(app) as c:
        yield c


def test_health_is_open(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_user_routes_require_token(client):
    assert client.get("/published-posts").status_code == 401
    assert client.get("/jobs", headers=as_user("bad")).status_code == 401


@pytest.mark.parametrize(
    "headers", [{}, {"Authorization": "Bearer wrong"}, {"Authorization": "worker-secret"}]
)
def test_worker_trigger_rejects_bad_secret(client, headers):
    assert client.post("/workers", headers=headers).status_code == 401


def test_worker_trigger_idle(client):
    for headers in (WORKER, CRON):
        response = client.post("/workers", headers=headers)
        assert response.status_code == 200
        assert response.json()["message"] == "No jobs to process"
        assert response.json()["processed"] == 0


def test_worker_trigger_unconfigured(client, settings):
    settings.WORKER_SECRET = ""
    settings.CRON_SECRET = ""
    assert client.post("/workers", headers=WORKER).status_code == 503


def test_publish_flow_end_to_end(client, graph, seed):
    seed(user_id="user-1", platform="instagram", account_id="acct-1")
    graph.on("POST", "/acct-1/media", {"id": "c1"})
    graph.on("GET", "/c1", {"status_code": "FINISHED"})
    graph.on("POST", "/acct-1/media_publish", {"id": "m1"})

    created = client.post(
        "/published-posts",
        json={"platform": "instagram", "media_urls": ["https://cdn.test/a.jpg"]},
        headers=as_user("user-1"),
    )
    assert created.status_code == 201
    post_id = created.json()["post"]["id"]
    job_id = created.json()["job_id"]
    assert created.json()["post"]["status"] == "pending"

    counts = client.get("/workers", headers=WORKER).json()
    assert counts["pending"] == 1

    run = client.post("/workers?max_jobs=5", headers=WORKER).json()
    assert run["processed"] == 1
    assert run["jobs"][0]["job_id"] == job_id
    assert run["jobs"][0]["status"] == "completed"

    job = client.get(f"/jobs/{job_id}", headers=as_user("user-1")).json()
    assert job["status"] == "completed"
    assert job["result"]["platform_post_id"] == "m1"

    post = client.get(f"/published-posts/{post_id}", headers=as_user("user-1")).json()
    assert post["status"] == "published"
    assert post["platform_post_url"] == "https://www.instagram.com/p/m1/"

    stream = client.get(f"/jobs/{job_id}/stream", headers=as_user("user-1"))
    assert stream.headers["content-type"].startswith("text/event-stream")
    assert '"type": "completed"' in stream.text


def test_failed_job_is_visible_with_reason(client):
    created = client.post(
        "/published-posts",
        json={"platform": "instagram", "media_urls": ["https://cdn.test/a.jpg"]},
        headers=as_user("user-1"),
    ).json()

    run = client.post("/workers", headers=WORKER).json()
    assert run["jobs"][0]["status"] == "failed"
    assert run["jobs"][0]["error"].startswith("auth_failed:")

    post = client.get(
        f"/published-posts/{created['post']['id']}", headers=as_user("user-1")
    ).json()
    assert post["status"] == "failed"
    assert post["failure_reason"] == "No instagram account connected"


def test_schedule_validation_is_a_400(client):
    response = client.post(
        "/published-posts",
        json={
            "platform": "facebook",
            "media_urls": ["https://cdn.test/a.jpg"],
            "scheduled_for": (utc_now() + timedelta(minutes=5)).isoformat(),
        },
        headers=as_user("user-1"),
    )
    assert response.status_code == 400
    assert response.json()["code"] == "validation"


def test_posts_are_private_and_cancellable(client):
    created = client.post(
        "/published-posts",
        json={
            "platform": "instagram",
            "media_urls": ["https://cdn.test/a.jpg"],
            "scheduled_for": (utc_now() + timedelta(days=1)).isoformat(),
        },
        headers=as_user("user-1"),
    ).json()
    post_id = created["post"]["id"]
    assert created["post"]["status"] == "scheduled"

    assert client.get(f"/published-posts/{post_id}", headers=as_user("user-2")).status_code == 404
    assert client.get(f"/jobs/{created['job_id']}", headers=as_user("user-2")).status_code == 404
    assert client.get("/published-posts", headers=as_user("user-2")).json() == []

    cancelled = client.delete(f"/published-posts/{post_id}", headers=as_user("user-1"))
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"
    assert client.delete(f"/published-posts/{post_id}", headers=as_user("user-1")).status_code == 404


def test_cron_endpoints(client):
    assert client.get("/cron/social-publish").status_code == 401

    swept = client.get("/cron/social-publish", headers=CRON)
    assert swept.json() == {"success": True, "published": 0}

    queued = client.post("/cron/social-metrics", headers=CRON)
    assert queued.status_code == 200
    assert queued.json()["job_id"]

    run = client.post("/workers", headers=WORKER).json()
    assert run["jobs"][0]["type"] == "social_metrics_fetch"
    assert run["jobs"][0]["status"] == "completed"


def test_token_refresh_endpoint(client, settings, graph, seed):
    assert client.get("/cron/social-refresh").status_code == 401
    assert client.get("/cron/social-refresh", headers=CRON).status_code == 503

    settings.META_APP_ID = "app-id"
    settings.META_APP_SECRET = "app-secret"
    seed(user_id="user-1", platform="instagram", access_token="ig-token")
    graph.on("GET", "/oauth/access_token", {"access_token": "ig-token-2", "expires_in": 3600})

    response = client.post("/cron/social-refresh", headers=CRON)

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "processed": 1,
        "refreshed": 1,
        "updated_page_tokens": 0,
        "skipped": 0,
        "errors": [],
    }


@pytest.mark.parametrize("path", ["/workersX", "/workers-admin", "/cronjobs"])
def test_lookalike_paths_still_need_a_jwt(client, path):
    response = client.post(path)
    assert response.status_code == 401
    assert response.json()["detail"] == "Missing Authorization header"
