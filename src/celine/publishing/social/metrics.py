"""`social_metrics_fetch` handler: refresh engagement metrics of published posts."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

import pydantic
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from celine.publishing.db.models import PublishedPost, utc_now
from celine.publishing.errors import ErrorKind, PublishingError, ValidationError
from celine.publishing.jobs.base import HandlerContext, JobOutcome
from celine.publishing.jobs.models import MetricsJobPayload
from celine.publishing.social.crypto import TokenCipher
from celine.publishing.social.facebook import FacebookClient
from celine.publishing.social.graph import GraphApiError
from celine.publishing.social.guard import ConnectionGuard, mark_expired
from celine.publishing.social.instagram import InstagramClient
from celine.publishing.social.models import MetricsResult, Platform, PostStatus

logger = logging.getLogger(__name__)


async def select_due_posts(
    db: AsyncSession,
    *,
    now: datetime,
    min_age: timedelta,
    min_refresh: timedelta,
    user_id: str | None = None,
    limit: int = 50,
) -> list[PublishedPost]:
    """Published posts old enough to have metrics and not refreshed recently."""
    stmt = select(PublishedPost).where(
        PublishedPost.status == PostStatus.published.value,
        PublishedPost.deleted_at.is_(None),
        PublishedPost.platform_post_id.is_not(None),
        PublishedPost.published_at < now - min_age,
        or_(
            PublishedPost.metrics_last_fetched_at.is_(None),
            PublishedPost.metrics_last_fetched_at < now - min_refresh,
        ),
    )
    if user_id is not None:
        stmt = stmt.where(PublishedPost.user_id == user_id)
    stmt = stmt.order_by(PublishedPost.published_at.asc()).limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def claim_post(
    db: AsyncSession, post: PublishedPost, *, now: datetime, min_refresh: timedelta
) -> bool:
    """Stamp `metrics_last_fetched_at` unless another worker refreshed it meanwhile."""
    res = await db.execute(
        update(PublishedPost)
        .where(
            PublishedPost.id == post.id,
            or_(
                PublishedPost.metrics_last_fetched_at.is_(None),
                PublishedPost.metrics_last_fetched_at < now - min_refresh,
            ),
        )
        .values(metrics_last_fetched_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return res.rowcount > 0


async def _fetch(
    ctx: HandlerContext, post: PublishedPost, token: str, account_id: str
) -> MetricsResult:
    base_url = ctx.settings.GRAPH_API_BASE_URL
    api_version = ctx.settings.GRAPH_API_VERSION
    if post.platform == Platform.instagram.value:
        client = InstagramClient(
            ctx.http, token, account_id, base_url=base_url, api_version=api_version
        )
        return await client.get_media_metrics(post.platform_post_id)
    client = FacebookClient(
        ctx.http, token, account_id, base_url=base_url, api_version=api_version
    )
    return await client.get_post_metrics(post.platform_post_id)


def _error(post: PublishedPost, message: str) -> dict[str, Any]:
    return {"post_id": post.id, "platform": post.platform, "error": message}


async def fetch_social_metrics(ctx: HandlerContext, payload: dict[str, Any]) -> JobOutcome:
    try:
        data = MetricsJobPayload.model_validate(payload)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid metrics payload: {e.errors()}") from e

    now = utc_now()
    min_refresh = timedelta(hours=ctx.settings.METRICS_MIN_REFRESH_HOURS)
    cipher = TokenCipher(ctx.settings.TOKEN_ENCRYPTION_KEY)

    async with ctx.sessions() as db:
        if data.published_post_id:
            post = await db.get(PublishedPost, data.published_post_id)
            posts = [post] if post is not None else []
        else:
            posts = await select_due_posts(
                db,
                now=now,
                min_age=timedelta(minutes=ctx.settings.METRICS_MIN_POST_AGE_MINUTES),
                min_refresh=min_refresh,
                user_id=data.user_id,
                limit=data.limit,
            )

    guard = ConnectionGuard(ctx.settings.TOKEN_EXPIRY_BUFFER_HOURS)
    updated = 0
    skipped = 0
    errors: list[dict[str, Any]] = []

    for post in posts:
        if not post.platform_post_id:
            errors.append(_error(post, "No platform_post_id"))
            continue

        async with ctx.sessions() as db:
            if not await claim_post(db, post, now=now, min_refresh=min_refresh):
                skipped += 1
                continue
            try:
                connection = await guard.acquire(db, post.user_id, post.platform, now)
            except PublishingError as e:
                errors.append(_error(post, e.message))
                continue

        try:
            token = cipher.decrypt(connection.access_token)
            metrics = await _fetch(ctx, post, token, connection.account_id)
        except (GraphApiError, PublishingError) as e:
            logger.warning("Metrics fetch failed for post %s: %s", post.id, e)
            errors.append(_error(post, str(e)))
            if isinstance(e, GraphApiError) and e.kind == ErrorKind.token_expired:
                async with ctx.sessions() as db:
                    await mark_expired(db, connection.id)
            continue

        async with ctx.sessions() as db:
            await db.execute(
                update(PublishedPost)
                .where(PublishedPost.id == post.id)
                .values(metrics=metrics.as_dict(), updated_at=utc_now())
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        updated += 1

    if errors:
        logger.warning("Metrics refresh: %d updated, %d errors", updated, len(errors))
    else:
        logger.info("Metrics refresh: %d updated", updated)

    return JobOutcome.success(
        {"updated_count": updated, "skipped_count": skipped, "errors": errors}
    )
