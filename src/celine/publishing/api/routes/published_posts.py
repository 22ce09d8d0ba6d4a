"""Published posts: schedule, list and cancel social publications.

POST   /published-posts        – create a post and the job that publishes it
GET    /published-posts        – list own posts (excludes cancelled)
GET    /published-posts/{id}   – one post
DELETE /published-posts/{id}   – cancel (soft-delete)
"""

from __future__ import annotations

import logging

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    HTTPException,
    Query,
    Request,
    status,
)
from sqlalchemy.ext.asyncio import AsyncSession

from celine.publishing.api.schemas import PublishedPostOut, PublishRequest, PublishResponse
from celine.publishing.db.session import get_db
from celine.publishing.errors import ValidationError
from celine.publishing.security.policies import get_current_user
from celine.publishing.social.models import Platform, PostStatus
from celine.publishing.social.producer import (
    cancel_publication,
    get_publication,
    list_publications,
    schedule_publication,
)
from celine.sdk.auth import JwtUser

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/published-posts", tags=["published-posts"])


async def _inline_tick(request: Request) -> None:
    try:
        await request.app.state.dispatcher.tick()
    except Exception:
        logger.exception("Inline worker tick failed")


@router.post("", response_model=PublishResponse, status_code=status.HTTP_201_CREATED)
async def create_published_post(
    body: PublishRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    user: JwtUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    post, job_id = await schedule_publication(
        db,
        user.sub,
        body.platform,
        body.media_urls,
        body.caption,
        body.scheduled_for,
        signal=getattr(request.app.state, "signal", None),
    )

    immediate = body.scheduled_for is None or body.platform == Platform.facebook
    if immediate and request.app.state.settings.WORKER_INLINE_TRIGGER:
        background_tasks.add_task(_inline_tick, request)

    return PublishResponse(post=PublishedPostOut.model_validate(post), job_id=job_id)


@router.get("", response_model=list[PublishedPostOut])
async def list_published_posts(
    post_status: PostStatus | None = Query(None, alias="status"),
    platform: Platform | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: JwtUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await list_publications(
        db, user.sub, status=post_status, platform=platform, limit=limit, offset=offset
    )


@router.get("/{post_id}", response_model=PublishedPostOut)
async def read_published_post(
    post_id: str,
    user: JwtUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await get_publication(db, user.sub, post_id)


@router.delete("/{post_id}", response_model=PublishedPostOut)
async def delete_published_post(
    post_id: str,
    user: JwtUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await cancel_publication(db, user.sub, post_id)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message) from e
