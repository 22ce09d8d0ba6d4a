"""Durable job queue on top of the `jobs` table.

All coordination between workers goes through this module. A job is handed to
exactly one worker by `reserve_next_job`, which selects and flips the row in a
single UPDATE statement; concurrent callers skip rows locked by each other.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from celine.publishing.db.models import Job, new_id, utc_now
from celine.publishing.errors import JobCreationFailedError, UnknownJobTypeError
from celine.publishing.jobs.models import TERMINAL_STATUSES, JobStatus, JobType

if TYPE_CHECKING:
    from celine.publishing.jobs.signal import Signal

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Producer side
# ---------------------------------------------------------------------------


async def create_job(
    db: AsyncSession,
    user_id: str,
    type: JobType | str,
    payload: dict[str, Any],
    *,
    priority: int = 0,
    scheduled_for: datetime | None = None,
    max_attempts: int = 3,
    signal: Signal | None = None,
) -> str:
    """Insert a pending job and return its id.

    Immediate jobs also poke the accelerator signal. That notification is best
    effort: the row is already committed and the next dispatcher tick finds it.
    """
    try:
        job_type = JobType(type)
    except ValueError as e:
        raise UnknownJobTypeError(f"Unknown job type: {type}") from e

    job = Job(
        id=new_id(),
        user_id=user_id,
        type=job_type.value,
        payload=payload,
        status=JobStatus.pending.value,
        priority=priority,
        attempts=0,
        max_attempts=max_attempts,
        scheduled_for=scheduled_for,
    )
    db.add(job)
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Failed to create job type=%s user=%s: %s", job_type.value, user_id, e)
        raise JobCreationFailedError(f"Failed to create {job_type.value} job") from e

    logger.info(
        "Created job id=%s type=%s priority=%s scheduled_for=%s",
        job.id,
        job.type,
        priority,
        scheduled_for,
    )

    if scheduled_for is None and signal is not None:
        try:
            await signal.notify(job.id, priority)
        except Exception as e:
            logger.warning("Accelerator notify failed for job=%s: %s", job.id, e)

    return job.id


# ---------------------------------------------------------------------------
# Worker side
# ---------------------------------------------------------------------------


async def reserve_next_job(db: AsyncSession, now: datetime | None = None) -> Job | None:
    """Atomically claim the next eligible job, or return None.

    Eligible: pending and due. Order: priority desc, then most recent first.
    """
    now = now or utc_now()
    candidate = aliased(Job, name="candidate")

    next_id = (
        select(candidate.id)
        .where(
            candidate.status == JobStatus.pending.value,
            or_(candidate.scheduled_for.is_(None), candidate.scheduled_for <= now),
        )
        .order_by(candidate.priority.desc(), candidate.created_at.desc())
        .limit(1)
        .with_for_update(skip_locked=True)
        .scalar_subquery()
    )

    stmt = (
        update(Job)
        .where(Job.id == next_id, Job.status == JobStatus.pending.value)
        .values(status=JobStatus.processing.value, started_at=now, updated_at=now)
        .returning(Job)
        .execution_options(synchronize_session=False, populate_existing=True)
    )
    result = await db.execute(stmt)
    job = result.scalars().first()
    await db.commit()

    if job is not None:
        logger.debug("Reserved job id=%s type=%s", job.id, job.type)
    return job


async def update_job_status(
    db: AsyncSession,
    job_id: str,
    status: JobStatus | str,
    *,
    result: dict[str, Any] | None = None,
    error: str | None = None,
) -> bool:
    """Move a job to `status`. Terminal rows are never touched again."""
    status = JobStatus(status)
    now = utc_now()
    values: dict[str, Any] = {"status": status.value, "updated_at": now}
    if status in TERMINAL_STATUSES:
        values["completed_at"] = now
    if result is not None:
        values["result"] = result
    if error is not None:
        values["error"] = error

    res = await db.execute(
        update(Job)
        .where(
            Job.id == job_id,
            Job.status.not_in([s.value for s in TERMINAL_STATUSES]),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    changed = res.rowcount > 0
    if not changed:
        logger.warning("Job %s not updated to %s (missing or terminal)", job_id, status.value)
    return changed


async def increment_job_attempts(db: AsyncSession, job_id: str) -> int:
    res = await db.execute(
        update(Job)
        .where(Job.id == job_id)
        .values(attempts=Job.attempts + 1, updated_at=utc_now())
        .returning(Job.attempts)
        .execution_options(synchronize_session=False)
    )
    attempts = res.scalar_one()
    await db.commit()
    return attempts


async def requeue_job(
    db: AsyncSession,
    job_id: str,
    *,
    delay_seconds: float = 0,
    error: str | None = None,
) -> bool:
    """Hand a processing job back to the queue while it still has attempts left.

    `error` keeps the last failure visible on the row while it waits.
    """
    now = utc_now()
    scheduled_for = now + timedelta(seconds=delay_seconds) if delay_seconds > 0 else None

    res = await db.execute(
        update(Job)
        .where(
            Job.id == job_id,
            Job.status == JobStatus.processing.value,
            Job.attempts < Job.max_attempts,
        )
        .values(
            status=JobStatus.pending.value,
            started_at=None,
            scheduled_for=scheduled_for,
            error=error,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return res.rowcount > 0


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def get_job(db: AsyncSession, job_id: str, *, user_id: str | None = None) -> Job | None:
    stmt = select(Job).where(Job.id == job_id)
    if user_id is not None:
        stmt = stmt.where(Job.user_id == user_id)
    result = await db.execute(stmt.execution_options(populate_existing=True))
    return result.scalar_one_or_none()


async def list_user_jobs(
    db: AsyncSession,
    user_id: str,
    *,
    status: JobStatus | str | None = None,
    type: JobType | str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Job]:
    stmt = select(Job).where(Job.user_id == user_id)
    if status is not None:
        stmt = stmt.where(Job.status == JobStatus(status).value)
    if type is not None:
        stmt = stmt.where(Job.type == JobType(type).value)
    stmt = stmt.order_by(Job.created_at.desc()).limit(limit).offset(offset)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def queue_counts(db: AsyncSession) -> dict[str, int]:
    result = await db.execute(select(Job.status, func.count()).group_by(Job.status))
    counts = {s.value: 0 for s in JobStatus}
    for status, n in result.all():
        counts[status] = n
    return counts
