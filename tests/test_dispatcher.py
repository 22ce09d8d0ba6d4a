from __future__ import annotations

import asyncio

import httpx

from celine.publishing.errors import ErrorKind, PermissionDeniedError, TokenExpiredError
from celine.publishing.jobs.base import JobOutcome
from celine.publishing.jobs.dispatcher import RETRYING, Dispatcher, run_forever
from celine.publishing.jobs.models import JobStatus, JobType
from celine.publishing.jobs.registry import HandlerRegistry, build_registry
from celine.publishing.jobs.signal import NullSignal
from celine.publishing.jobs.store import get_job

from conftest import make_job


def dispatcher(sessions, http, settings, handlers) -> Dispatcher:
    return Dispatcher(sessions, HandlerRegistry(handlers), http, settings)


async def _job(db, **kw):
    job = make_job(**kw)
    db.add(job)
    await db.commit()
    return job.id


async def test_successful_job_is_completed_with_result(db, sessions, http, settings):
    seen = {}

    async def handler(ctx, payload):
        seen["payload"] = payload
        seen["job"] = ctx.job.id
        return JobOutcome.success({"done": True})

    job_id = await _job(db, type=JobType.social_metrics_fetch.value, payload={"limit": 5})
    d = dispatcher(sessions, http, settings, {JobType.social_metrics_fetch: handler})

    report = await d.tick()

    assert report.processed
    assert report.status == JobStatus.completed.value
    assert seen == {"payload": {"limit": 5}, "job": job_id}
    job = await get_job(db, job_id)
    assert job.status == JobStatus.completed.value
    assert job.result == {"done": True}
    assert job.completed_at is not None


async def test_idle_tick_reports_nothing(sessions, http, settings):
    d = dispatcher(sessions, http, settings, {})
    report = await d.tick()
    assert not report.processed
    assert report.job_id is None


async def test_retryable_failure_requeues_until_attempts_run_out(db, sessions, http, settings):
    async def handler(ctx, payload):
        return JobOutcome.failure(ErrorKind.rate_limited, "slow down")

    job_id = await _job(db, max_attempts=2)
    d = dispatcher(sessions, http, settings, {JobType.social_publish_instagram: handler})

    first = await d.tick()
    assert first.status == RETRYING
    assert first.attempt == 1
    job = await get_job(db, job_id)
    assert job.status == JobStatus.pending.value
    assert job.attempts == 1
    assert job.error == "rate_limited: slow down"

    second = await d.tick()
    assert second.status == JobStatus.failed.value
    job = await get_job(db, job_id)
    assert job.status == JobStatus.failed.value
    assert job.attempts == 2
    assert job.attempts <= job.max_attempts

    assert not (await d.tick()).processed


async def test_non_retryable_failure_is_terminal(db, sessions, http, settings):
    async def handler(ctx, payload):
        return JobOutcome.failure(ErrorKind.token_expired, "reconnect")

    job_id = await _job(db)
    d = dispatcher(sessions, http, settings, {JobType.social_publish_instagram: handler})

    report = await d.tick()

    assert report.status == JobStatus.failed.value
    job = await get_job(db, job_id)
    assert job.status == JobStatus.failed.value
    assert job.attempts == 1
    assert job.error == "token_expired: reconnect"


async def test_handler_exceptions_become_outcomes(db, sessions, http, settings):
    async def forbidden(ctx, payload):
        raise PermissionDeniedError("Forbidden")

    async def crash(ctx, payload):
        raise RuntimeError("boom")

    forbidden_id = await _job(db, type=JobType.social_publish_facebook.value, priority=1)
    crash_id = await _job(db, max_attempts=1)
    d = dispatcher(
        sessions,
        http,
        settings,
        {
            JobType.social_publish_facebook: forbidden,
            JobType.social_publish_instagram: crash,
        },
    )

    reports = await d.drain(10)

    assert [r.job_id for r in reports] == [forbidden_id, crash_id]
    assert (await get_job(db, forbidden_id)).error == "permission_denied: Forbidden"
    crashed = await get_job(db, crash_id)
    assert crashed.status == JobStatus.failed.value
    assert crashed.error == "publish_failed: boom"


async def test_unregistered_type_fails_the_job(db, sessions, http, settings):
    job_id = await _job(db, type=JobType.ai_text_generation.value)
    d = Dispatcher(sessions, build_registry(), http, settings)

    report = await d.tick()

    assert report.status == JobStatus.failed.value
    job = await get_job(db, job_id)
    assert job.error.startswith("unknown_job_type:")


async def test_drain_stops_at_max_jobs(db, sessions, http, settings):
    async def handler(ctx, payload):
        return JobOutcome.success()

    for _ in range(3):
        await _job(db)
    d = dispatcher(sessions, http, settings, {JobType.social_publish_instagram: handler})

    assert len(await d.drain(2)) == 2
    assert len(await d.drain(5)) == 1


def test_retry_delay_is_exponential(sessions, http, settings):
    settings.RETRY_BACKOFF_BASE_SECONDS = 2
    d = dispatcher(sessions, http, settings, {})
    assert [d.retry_delay(n) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]


async def test_run_forever_processes_then_stops(db, sessions, http, settings):
    stop = asyncio.Event()
    done = []

    async def handler(ctx, payload):
        done.append(ctx.job.id)
        if len(done) == 2:
            stop.set()
        return JobOutcome.success()

    await _job(db)
    await _job(db)
    d = dispatcher(sessions, http, settings, {JobType.social_publish_instagram: handler})

    await asyncio.wait_for(
        run_forever(d, NullSignal(), poll_seconds=0.01, stop=stop), timeout=5
    )
    assert len(done) == 2


def test_default_registry_covers_social_types():
    registry = build_registry()
    for job_type in (
        JobType.social_publish_instagram,
        JobType.social_publish_facebook,
        JobType.social_metrics_fetch,
    ):
        assert job_type in registry
    assert JobType.ai_text_generation in registry.missing()


def test_outcome_classification():
    network = JobOutcome.from_exception(httpx.ReadTimeout("timed out"))
    assert network.error == ErrorKind.network_error
    assert network.retryable

    expired = JobOutcome.from_exception(TokenExpiredError("reconnect"))
    assert expired.error == ErrorKind.token_expired
    assert not expired.retryable
    assert expired.describe() == "token_expired: reconnect"

    assert not JobOutcome.success().retryable
