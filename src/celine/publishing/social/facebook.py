"""Facebook Page adapter (native scheduling, single synchronous call)."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from celine.publishing.db.models import as_utc, utc_now
from celine.publishing.errors import ValidationError
from celine.publishing.social.graph import GraphApiError, GraphClient
from celine.publishing.social.models import (
    MetricsResult,
    Platform,
    PostStatus,
    PublishResult,
)

logger = logging.getLogger(__name__)

MIN_SCHEDULE_LEAD = timedelta(minutes=10)
MAX_SCHEDULE_LEAD = timedelta(days=30)

POST_METRICS = [
    "post_impressions",
    "post_impressions_unique",
    "post_engaged_users",
    "post_reactions_like_total",
    "post_comments",
    "post_shares",
]


def post_url(post_id: str) -> str:
    return f"https://www.facebook.com/{post_id}/"


def validate_schedule_window(scheduled_for: datetime, now: datetime | None = None) -> int:
    """Return the Unix timestamp for `scheduled_publish_time`, or raise ValidationError."""
    now = now or utc_now()
    target = as_utc(scheduled_for)
    if target < now + MIN_SCHEDULE_LEAD:
        raise ValidationError("Facebook posts must be scheduled at least 10 minutes in advance")
    if target > now + MAX_SCHEDULE_LEAD:
        raise ValidationError("Facebook posts cannot be scheduled more than 30 days in advance")
    return int(target.timestamp())


class FacebookClient(GraphClient):
    platform = Platform.facebook

    async def publish_photo(
        self,
        image_url: str,
        caption: str | None = None,
        *,
        scheduled_for: datetime | None = None,
        now: datetime | None = None,
    ) -> PublishResult:
        """Publish now, or hand the post to Facebook's own scheduler."""
        params: dict[str, object] = {
            "access_token": self.access_token,
            "url": image_url,
        }
        if caption:
            params["message"] = caption

        if scheduled_for is not None:
            try:
                params["scheduled_publish_time"] = validate_schedule_window(scheduled_for, now)
            except ValidationError as e:
                return PublishResult.failed(e.kind, e.message)
            params["published"] = "false"
        else:
            params["published"] = "true"

        try:
            data = await self._call("POST", f"{self.account_id}/photos", params=params)
        except GraphApiError as e:
            return e.to_result()

        # photo uploads answer with both the photo id and the feed post id
        try:
            post_id = self.object_id(data, "post_id", "id")
        except GraphApiError as e:
            return e.to_result()
        return PublishResult(
            status=PostStatus.scheduled if scheduled_for else PostStatus.published,
            platform_post_id=post_id,
            platform_post_url=post_url(post_id),
        )

    async def get_post_metrics(self, post_id: str) -> MetricsResult:
        values = await self._insights(post_id, POST_METRICS)
        likes = values.get("post_reactions_like_total")
        impressions = values.get("post_impressions") or values.get("post_impressions_unique")

        engagement = None
        if impressions and likes:
            engagement = likes / impressions * 100

        return MetricsResult(
            like_count=likes,
            comments_count=values.get("post_comments"),
            shares_count=values.get("post_shares"),
            impressions=impressions,
            reach=values.get("post_impressions_unique"),
            engagement_rate=engagement,
            raw=values,
        )
