"""Producer side of social publishing: schedule, cancel, and the due-post sweep."""

from __future__ import annotations

import logging
from datetime import datetime
from urllib.parse import urlparse

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from celine.publishing.db.models import PublishedPost, as_utc, new_id, utc_now
from celine.publishing.errors import JobCreationFailedError, NotFoundError, ValidationError
from celine.publishing.jobs.models import JobType
from celine.publishing.jobs.signal import Signal
from celine.publishing.jobs.store import create_job
from celine.publishing.social.facebook import validate_schedule_window
from celine.publishing.social.instagram import MAX_CAROUSEL_ITEMS
from celine.publishing.social.models import Platform, PostStatus

logger = logging.getLogger(__name__)

PUBLISH_JOB_TYPES = {
    Platform.instagram: JobType.social_publish_instagram,
    Platform.facebook: JobType.social_publish_facebook,
}

# posts in these states can still be withdrawn
CANCELLABLE = {
    PostStatus.scheduled.value,
    PostStatus.pending.value,
    PostStatus.failed.value,
}


def validate_media_urls(media_urls: list[str]) -> list[str]:
    if not media_urls:
        raise ValidationError("At least one media URL is required")
    if len(media_urls) > MAX_CAROUSEL_ITEMS:
        raise ValidationError(f"At most {MAX_CAROUSEL_ITEMS} media URLs are allowed")
    for url in media_urls:
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValidationError(f"Media URL must be a public http(s) URL: {url}")
    return list(media_urls)


async def schedule_publication(
    db: AsyncSession,
    user_id: str,
    platform: Platform | str,
    media_urls: list[str],
    caption: str | None = None,
    scheduled_for: datetime | None = None,
    *,
    signal: Signal | None = None,
    max_attempts: int = 3,
    now: datetime | None = None,
) -> tuple[PublishedPost, str]:
    """Create the post row and the job that publishes it.

    Instagram jobs wait in the queue until `scheduled_for`. Facebook jobs run
    right away and register the post with Facebook's own scheduler. If the job
    cannot be created the post row is removed again.
    """
    try:
        platform = Platform(platform)
    except ValueError as e:
        raise ValidationError(f"Unsupported platform: {platform}") from e

    now = now or utc_now()
    media_urls = validate_media_urls(media_urls)
    scheduled_for = as_utc(scheduled_for)
    if scheduled_for is not None:
        if scheduled_for <= now:
            raise ValidationError("scheduled_for must be in the future")
        if platform == Platform.facebook:
            validate_schedule_window(scheduled_for, now)

    post = PublishedPost(
        id=new_id(),
        user_id=user_id,
        platform=platform.value,
        status=(PostStatus.scheduled if scheduled_for else PostStatus.pending).value,
        caption=caption,
        media_urls=media_urls,
        scheduled_for=scheduled_for,
    )
    db.add(post)
    await db.commit()
    post_id = post.id

    job_scheduled_for = scheduled_for if platform == Platform.instagram else None
    try:
        job_id = await create_job(
            db,
            user_id,
            PUBLISH_JOB_TYPES[platform],
            {"published_post_id": post_id, "user_id": user_id},
            scheduled_for=job_scheduled_for,
            max_attempts=max_attempts,
            signal=signal,
        )
    except JobCreationFailedError:
        logger.error("Job creation failed for post %s, removing it", post_id)
        await db.execute(delete(PublishedPost).where(PublishedPost.id == post_id))
        await db.commit()
        raise

    logger.info(
        "Scheduled %s post %s (job=%s, scheduled_for=%s)",
        platform.value,
        post.id,
        job_id,
        scheduled_for,
    )
    return post, job_id


async def get_publication(db: AsyncSession, user_id: str, post_id: str) -> PublishedPost:
    result = await db.execute(
        select(PublishedPost).where(
            PublishedPost.id == post_id,
            PublishedPost.user_id == user_id,
            PublishedPost.deleted_at.is_(None),
        )
    )
    post = result.scalar_one_or_none()
    if post is None:
        raise NotFoundError("Published post not found")
    return post


async def list_publications(
    db: AsyncSession,
    user_id: str,
    *,
    status: PostStatus | str | None = None,
    platform: Platform | str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[PublishedPost]:
    stmt = select(PublishedPost).where(
        PublishedPost.user_id == user_id,
        PublishedPost.deleted_at.is_(None),
    )
    if status is not None:
        stmt = stmt.where(PublishedPost.status == PostStatus(status).value)
    if platform is not None:
        stmt = stmt.where(PublishedPost.platform == Platform(platform).value)
    stmt = stmt.order_by(PublishedPost.created_at.desc()).limit(limit).offset(offset)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def cancel_publication(db: AsyncSession, user_id: str, post_id: str) -> PublishedPost:
    """Soft-delete a post. A job already running for it is not interrupted."""
    post = await get_publication(db, user_id, post_id)
    if post.status not in CANCELLABLE:
        raise ValidationError(f"Cannot cancel a post in status {post.status}")
    now = utc_now()
    post.status = PostStatus.cancelled.value
    post.deleted_at = now
    post.updated_at = now
    await db.commit()
    logger.info("Cancelled post %s", post_id)
    return post


async def sweep_due_posts(db: AsyncSession, now: datetime | None = None) -> int:
    """Flip natively scheduled Facebook posts to published once their time has come."""
    now = now or utc_now()
    res = await db.execute(
        update(PublishedPost)
        .where(
            PublishedPost.platform == Platform.facebook.value,
            PublishedPost.status == PostStatus.scheduled.value,
            PublishedPost.platform_post_id.is_not(None),
            PublishedPost.scheduled_for <= now,
            PublishedPost.deleted_at.is_(None),
        )
        .values(
            status=PostStatus.published.value,
            published_at=PublishedPost.scheduled_for,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    if res.rowcount:
        logger.info("Marked %d scheduled Facebook posts as published", res.rowcount)
    return res.rowcount
