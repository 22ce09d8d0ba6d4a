"""Worker trigger, called by the external scheduler every minute.

POST /workers        – reserve and run up to `max_jobs` jobs
GET  /workers        – queue counts per status
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from celine.publishing.api.schemas import (
    QueueCountsResponse,
    TickOut,
    WorkerRunResponse,
)
from celine.publishing.db.session import get_db
from celine.publishing.jobs.dispatcher import Dispatcher
from celine.publishing.jobs.store import queue_counts
from celine.publishing.security.auth import require_worker_secret

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/workers",
    tags=["workers"],
    dependencies=[Depends(require_worker_secret)],
)


def get_dispatcher(request: Request) -> Dispatcher:
    return request.app.state.dispatcher


@router.post("", response_model=WorkerRunResponse)
async def run_workers(
    max_jobs: int = Query(1, ge=1, le=50),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    reports = await dispatcher.drain(max_jobs)
    if not reports:
        return WorkerRunResponse(message="No jobs to process")

    logger.info("Worker trigger processed %d job(s)", len(reports))
    return WorkerRunResponse(
        processed=len(reports),
        jobs=[TickOut(**r.as_dict()) for r in reports],
    )


@router.get("", response_model=QueueCountsResponse)
async def get_queue_counts(db: AsyncSession = Depends(get_db)):
    return QueueCountsResponse(**await queue_counts(db))
