"""User-facing job status endpoints.

GET /jobs              – list own jobs
GET /jobs/{id}         – one job
GET /jobs/{id}/stream  – server-sent status events until the job finishes
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from celine.publishing.api.schemas import JobOut
from celine.publishing.db.models import Job
from celine.publishing.db.session import get_db, get_sessions
from celine.publishing.jobs.models import JobStatus, JobType
from celine.publishing.jobs.store import get_job, list_user_jobs
from celine.publishing.security.policies import get_current_user
from celine.publishing.streaming.server import SSEStream, create_sse_response
from celine.sdk.auth import JwtUser

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["jobs"])


def _event(kind: str, job: Job) -> dict[str, Any]:
    return {"type": kind, "data": JobOut.model_validate(job).model_dump(mode="json")}


async def _get_own_job(db: AsyncSession, job_id: str, user_id: str) -> Job:
    job = await get_job(db, job_id, user_id=user_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return job


@router.get("", response_model=list[JobOut])
async def list_jobs(
    job_status: JobStatus | None = Query(None, alias="status"),
    job_type: JobType | None = Query(None, alias="type"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: JwtUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await list_user_jobs(
        db, user.sub, status=job_status, type=job_type, limit=limit, offset=offset
    )


@router.get("/{job_id}", response_model=JobOut)
async def read_job(
    job_id: str,
    user: JwtUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await _get_own_job(db, job_id, user.sub)


def job_status_stream(
    sessions: async_sessionmaker[AsyncSession],
    job_id: str,
    user_id: str,
    *,
    poll_seconds: float,
    max_seconds: float,
):
    """Build the SSE handler that follows one job until it is terminal."""

    async def handler(stream: SSEStream) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max_seconds
        last: tuple[str, int] | None = None

        while not stream.closed:
            async with sessions() as db:
                job = await get_job(db, job_id, user_id=user_id)
            if job is None:
                await stream.send({"type": "error", "data": {"error": "Job not found"}})
                return

            if job.status == JobStatus.completed.value:
                await stream.send(_event("completed", job))
                return
            if job.status == JobStatus.failed.value:
                await stream.send(_event("failed", job))
                return

            current = (job.status, job.attempts)
            if current != last:
                await stream.send(_event("status", job))
                last = current

            if loop.time() >= deadline:
                await stream.send({"type": "timeout", "data": {"job_id": job_id}})
                return
            await asyncio.sleep(poll_seconds)

    return handler


@router.get("/{job_id}/stream")
async def stream_job(
    job_id: str,
    request: Request,
    user: JwtUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await _get_own_job(db, job_id, user.sub)
    cfg = request.app.state.settings
    handler = job_status_stream(
        get_sessions(request),
        job_id,
        user.sub,
        poll_seconds=cfg.SSE_POLL_SECONDS,
        max_seconds=cfg.SSE_MAX_STREAM_SECONDS,
    )
    return create_sse_response(handler, heartbeat_interval=cfg.SSE_HEARTBEAT_SECONDS)
