"""Job handlers for `social_publish_instagram` and `social_publish_facebook`.

Both follow the same shape: load the post and pass the connection guard in a
short session, call the platform with no session open, then record the result
in a second short session.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable

import pydantic
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from celine.publishing.db.models import PublishedPost, as_utc, utc_now
from celine.publishing.errors import (
    ErrorKind,
    NotFoundError,
    PermissionDeniedError,
    PublishingError,
    ValidationError,
)
from celine.publishing.jobs.base import HandlerContext, JobOutcome
from celine.publishing.jobs.models import PublishJobPayload
from celine.publishing.social.crypto import TokenCipher
from celine.publishing.social.facebook import FacebookClient
from celine.publishing.social.guard import ConnectionGuard, mark_expired
from celine.publishing.social.instagram import InstagramClient
from celine.publishing.social.models import Platform, PostStatus, PublishResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PublishTarget:
    """Snapshot of what the platform call needs; no ORM objects cross the network call."""

    post_id: str
    connection_id: str
    account_id: str
    access_token: str
    media_urls: list[str]
    caption: str | None
    scheduled_for: datetime | None


def parse_payload(payload: dict[str, Any]) -> PublishJobPayload:
    try:
        return PublishJobPayload.model_validate(payload)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid publish payload: {e.errors()}") from e


async def _record_failure(
    db: AsyncSession, post: PublishedPost, message: str, *, final: bool
) -> None:
    post.status = PostStatus.failed.value if final else PostStatus.pending.value
    post.failure_reason = message
    post.updated_at = utc_now()
    await db.commit()


async def prepare(
    ctx: HandlerContext, payload: dict[str, Any], platform: Platform
) -> PublishTarget:
    """Load the post, check ownership and credentials, mark it processing."""
    data = parse_payload(payload)
    guard = ConnectionGuard(ctx.settings.TOKEN_EXPIRY_BUFFER_HOURS)
    cipher = TokenCipher(ctx.settings.TOKEN_ENCRYPTION_KEY)

    async with ctx.sessions() as db:
        post = await db.get(PublishedPost, data.published_post_id)
        if post is None or post.deleted_at is not None:
            raise NotFoundError(f"Published post {data.published_post_id} not found")
        if post.user_id != data.user_id:
            raise PermissionDeniedError("Forbidden")
        if post.platform != platform.value:
            raise ValidationError(f"Post {post.id} targets {post.platform}, not {platform.value}")
        if not post.media_urls:
            await _record_failure(db, post, "No media URLs found", final=True)
            raise ValidationError("No media URLs found")

        try:
            connection = await guard.acquire(db, post.user_id, platform)
            access_token = cipher.decrypt(connection.access_token)
        except PublishingError as e:
            # credential failures never heal by retrying
            await _record_failure(db, post, e.message, final=True)
            raise

        target = PublishTarget(
            post_id=post.id,
            connection_id=connection.id,
            account_id=connection.account_id,
            access_token=access_token,
            media_urls=list(post.media_urls),
            caption=post.caption,
            scheduled_for=as_utc(post.scheduled_for),
        )
        post.status = PostStatus.processing.value
        post.updated_at = utc_now()
        await db.commit()

    return target


async def settle(ctx: HandlerContext, target: PublishTarget, result: PublishResult) -> JobOutcome:
    """Write the platform result back onto the post."""
    async with ctx.sessions() as db:
        if result.error == ErrorKind.token_expired:
            await mark_expired(db, target.connection_id)

        post = await db.get(PublishedPost, target.post_id)
        if post is None:
            logger.warning("Post %s vanished while publishing", target.post_id)
            return JobOutcome.from_publish_result(result)

        now = utc_now()
        if result.ok:
            post.status = result.status.value
            post.platform_post_id = result.platform_post_id
            post.platform_post_url = result.platform_post_url
            post.failure_reason = None
            if result.status == PostStatus.published:
                post.published_at = now
            post.updated_at = now
            await db.commit()
            logger.info(
                "Post %s %s as %s", target.post_id, result.status.value, result.platform_post_id
            )
        else:
            final = not result.retryable or ctx.last_attempt
            await _record_failure(db, post, result.message or result.error.value, final=final)
            logger.warning(
                "Post %s publish failed (%s, final=%s): %s",
                target.post_id,
                result.error.value,
                final,
                result.message,
            )

    return JobOutcome.from_publish_result(result)


async def release(ctx: HandlerContext, post_id: str, message: str) -> None:
    """Move a post still marked processing back to pending, or to failed on the last attempt."""
    status = PostStatus.failed if ctx.last_attempt else PostStatus.pending
    async with ctx.sessions() as db:
        await db.execute(
            update(PublishedPost)
            .where(
                PublishedPost.id == post_id,
                PublishedPost.status == PostStatus.processing.value,
            )
            .values(status=status.value, failure_reason=message, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        await db.commit()


async def deliver(
    ctx: HandlerContext, target: PublishTarget, call: Awaitable[PublishResult]
) -> JobOutcome:
    """Await the platform call and settle it. The post never stays processing."""
    try:
        result = await call
    except Exception as e:
        logger.exception("Post %s: unexpected error from platform adapter", target.post_id)
        result = PublishResult.failed(ErrorKind.publish_failed, str(e) or type(e).__name__)

    try:
        return await settle(ctx, target, result)
    except Exception as e:
        logger.exception("Post %s: could not record publish result", target.post_id)
        await release(ctx, target.post_id, f"Could not record publish result: {e}")
        raise


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def publish_instagram(ctx: HandlerContext, payload: dict[str, Any]) -> JobOutcome:
    target = await prepare(ctx, payload, Platform.instagram)
    client = InstagramClient(
        ctx.http,
        target.access_token,
        target.account_id,
        base_url=ctx.settings.GRAPH_API_BASE_URL,
        api_version=ctx.settings.GRAPH_API_VERSION,
        poll_interval=ctx.settings.INSTAGRAM_POLL_INTERVAL_SECONDS,
        poll_max_attempts=ctx.settings.INSTAGRAM_POLL_MAX_ATTEMPTS,
    )
    return await deliver(
        ctx, target, client.publish_post(target.media_urls, target.caption, cancel=ctx.cancel)
    )


async def publish_facebook(ctx: HandlerContext, payload: dict[str, Any]) -> JobOutcome:
    target = await prepare(ctx, payload, Platform.facebook)
    client = FacebookClient(
        ctx.http,
        target.access_token,
        target.account_id,
        base_url=ctx.settings.GRAPH_API_BASE_URL,
        api_version=ctx.settings.GRAPH_API_VERSION,
    )
    if len(target.media_urls) > 1:
        logger.info("Facebook post %s: publishing first of %d images", target.post_id, len(target.media_urls))

    # past or missing dates publish right away; future ones use native scheduling
    now = utc_now()
    scheduled_for = target.scheduled_for
    if scheduled_for is not None and scheduled_for <= now:
        scheduled_for = None

    return await deliver(
        ctx,
        target,
        client.publish_photo(
            target.media_urls[0], target.caption, scheduled_for=scheduled_for, now=now
        ),
    )
