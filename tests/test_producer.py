from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from celine.publishing.db.models import Job, PublishedPost, as_utc, utc_now
from celine.publishing.errors import JobCreationFailedError, NotFoundError, ValidationError
from celine.publishing.jobs.store import get_job
from celine.publishing.social import producer
from celine.publishing.social.producer import (
    cancel_publication,
    get_publication,
    list_publications,
    schedule_publication,
    sweep_due_posts,
)

from conftest import add_post

IMG = ["https://cdn.test/a.jpg"]


class RecordingSignal:
    def __init__(self):
        self.notified = []

    async def notify(self, job_id, priority=0):
        self.notified.append(job_id)


async def _count(db, model):
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


async def test_immediate_instagram_post(db):
    signal = RecordingSignal()
    post, job_id = await schedule_publication(
        db, "user-1", "instagram", IMG, "hello", signal=signal
    )

    assert post.status == "pending"
    job = await get_job(db, job_id)
    assert job.type == "social_publish_instagram"
    assert job.payload == {"published_post_id": post.id, "user_id": "user-1"}
    assert job.scheduled_for is None
    assert signal.notified == [job_id]


async def test_future_instagram_post_waits_in_queue(db):
    when = utc_now() + timedelta(days=2)
    signal = RecordingSignal()
    post, job_id = await schedule_publication(
        db, "user-1", "instagram", IMG, scheduled_for=when, signal=signal
    )

    assert post.status == "scheduled"
    job = await get_job(db, job_id)
    assert as_utc(job.scheduled_for) == when
    assert signal.notified == []


async def test_future_facebook_post_runs_now(db):
    when = utc_now() + timedelta(hours=1)
    post, job_id = await schedule_publication(
        db, "user-1", "facebook", IMG, scheduled_for=when
    )

    assert post.status == "scheduled"
    job = await get_job(db, job_id)
    assert job.type == "social_publish_facebook"
    assert job.scheduled_for is None


@pytest.mark.parametrize(
    "platform, media, lead",
    [
        ("facebook", IMG, timedelta(minutes=5)),
        ("facebook", IMG, timedelta(days=40)),
        ("instagram", IMG, timedelta(minutes=-5)),
        ("instagram", [], None),
        ("instagram", ["ftp://cdn.test/a.jpg"], None),
        ("instagram", [f"https://cdn.test/{i}.jpg" for i in range(11)], None),
        ("tiktok", IMG, None),
    ],
)
async def test_invalid_requests_create_nothing(db, platform, media, lead):
    when = utc_now() + lead if lead is not None else None
    with pytest.raises(ValidationError):
        await schedule_publication(db, "user-1", platform, media, scheduled_for=when)
    assert await _count(db, PublishedPost) == 0
    assert await _count(db, Job) == 0


async def test_job_creation_failure_removes_post(db, monkeypatch):
    async def broken_create_job(*args, **kwargs):
        raise JobCreationFailedError("queue unavailable")

    monkeypatch.setattr(producer, "create_job", broken_create_job)

    with pytest.raises(JobCreationFailedError):
        await schedule_publication(db, "user-1", "instagram", IMG)
    assert await _count(db, PublishedPost) == 0


async def test_cancel_hides_post(db):
    post = await add_post(db, status="scheduled")

    cancelled = await cancel_publication(db, "user-1", post.id)

    assert cancelled.status == "cancelled"
    assert cancelled.deleted_at is not None
    assert await list_publications(db, "user-1") == []
    with pytest.raises(NotFoundError):
        await get_publication(db, "user-1", post.id)


async def test_published_post_cannot_be_cancelled(db):
    post = await add_post(db, status="published")
    with pytest.raises(ValidationError):
        await cancel_publication(db, "user-1", post.id)


async def test_cancel_other_users_post_is_not_found(db):
    post = await add_post(db, user_id="user-2")
    with pytest.raises(NotFoundError):
        await cancel_publication(db, "user-1", post.id)


async def test_list_filters(db):
    await add_post(db, platform="instagram", status="published")
    await add_post(db, platform="facebook", status="failed")
    await add_post(db, user_id="user-2")

    assert len(await list_publications(db, "user-1")) == 2
    assert [p.platform for p in await list_publications(db, "user-1", status="failed")] == [
        "facebook"
    ]
    assert len(await list_publications(db, "user-1", platform="instagram")) == 1


async def test_sweep_publishes_due_facebook_posts(db):
    now = utc_now()
    due_at = now - timedelta(minutes=3)
    due = await add_post(
        db, platform="facebook", status="scheduled", scheduled_for=due_at,
        platform_post_id="page_1",
    )
    future = await add_post(
        db, platform="facebook", status="scheduled",
        scheduled_for=now + timedelta(hours=1), platform_post_id="page_2",
    )
    unregistered = await add_post(
        db, platform="facebook", status="scheduled", scheduled_for=due_at
    )
    instagram = await add_post(
        db, platform="instagram", status="scheduled", scheduled_for=due_at,
        platform_post_id="m1",
    )

    assert await sweep_due_posts(db, now) == 1
    assert await sweep_due_posts(db, now) == 0

    async def reload(post):
        return await db.get(PublishedPost, post.id, populate_existing=True)

    swept = await reload(due)
    assert swept.status == "published"
    assert as_utc(swept.published_at) == due_at
    for untouched in (future, unregistered, instagram):
        assert (await reload(untouched)).status == "scheduled"
