"""Cron endpoints, called by the external scheduler with the shared secret.

GET  /cron/social-publish   – mark natively scheduled Facebook posts as published
POST /cron/social-metrics   – enqueue a metrics refresh job
GET  /cron/social-refresh   – refresh long-lived Meta tokens close to expiry
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from celine.publishing.api.schemas import EnqueueResponse, RefreshResponse, SweepResponse
from celine.publishing.db.session import get_db
from celine.publishing.jobs.models import JobType
from celine.publishing.jobs.store import create_job
from celine.publishing.security.auth import require_worker_secret
from celine.publishing.social.producer import sweep_due_posts
from celine.publishing.social.refresh import refresh_connections

logger = logging.getLogger(__name__)

SYSTEM_USER = "system"

router = APIRouter(
    prefix="/cron",
    tags=["cron"],
    dependencies=[Depends(require_worker_secret)],
)


@router.get("/social-publish", response_model=SweepResponse)
async def social_publish(db: AsyncSession = Depends(get_db)):
    published = await sweep_due_posts(db)
    return SweepResponse(published=published)


@router.post("/social-metrics", response_model=EnqueueResponse)
async def social_metrics(request: Request, db: AsyncSession = Depends(get_db)):
    job_id = await create_job(
        db,
        SYSTEM_USER,
        JobType.social_metrics_fetch,
        {},
        signal=getattr(request.app.state, "signal", None),
    )
    return EnqueueResponse(job_id=job_id)


@router.api_route(
    "/social-refresh", methods=["GET", "POST"], response_model=RefreshResponse
)
async def social_refresh(request: Request):
    cfg = request.app.state.settings
    if not cfg.META_APP_ID or not cfg.META_APP_SECRET:
        logger.error("META_APP_ID / META_APP_SECRET not configured, cannot refresh tokens")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Meta OAuth not configured",
        )
    report = await refresh_connections(
        request.app.state.sessions, request.app.state.http, cfg
    )
    return RefreshResponse(**report.as_dict())
