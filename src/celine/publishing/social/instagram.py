"""Instagram Graph API adapter (container-based publishing).

Publishing is a three step protocol: create a media container, poll it until
Instagram finishes processing, then publish it. `media_publish` is called
exactly once, and only for a FINISHED container.
"""

from __future__ import annotations

import asyncio
import logging

import httpx

from celine.publishing.errors import ErrorKind
from celine.publishing.social.graph import (
    GRAPH_API_BASE_URL,
    GRAPH_API_VERSION,
    GraphApiError,
    GraphClient,
)
from celine.publishing.social.models import (
    ContainerStatus,
    MetricsResult,
    Platform,
    PostStatus,
    PublishResult,
)

logger = logging.getLogger(__name__)

MAX_CAROUSEL_ITEMS = 10
MEDIA_METRICS = [
    "like_count",
    "comments_count",
    "saved_count",
    "shares_count",
    "impressions",
    "reach",
]


def post_url(media_id: str) -> str:
    return f"https://www.instagram.com/p/{media_id}/"


class InstagramClient(GraphClient):
    platform = Platform.instagram

    def __init__(
        self,
        http: httpx.AsyncClient,
        access_token: str,
        account_id: str,
        *,
        base_url: str = GRAPH_API_BASE_URL,
        api_version: str = GRAPH_API_VERSION,
        poll_interval: float = 2.0,
        poll_max_attempts: int = 10,
    ):
        super().__init__(
            http, access_token, account_id, base_url=base_url, api_version=api_version
        )
        self.poll_interval = poll_interval
        self.poll_max_attempts = poll_max_attempts

    # ------------------------------------------------------------------
    # Protocol steps
    # ------------------------------------------------------------------

    async def create_container(
        self,
        image_url: str,
        caption: str | None = None,
        *,
        is_carousel_item: bool = False,
    ) -> str:
        body: dict[str, object] = {
            "image_url": image_url,
            "access_token": self.access_token,
        }
        if is_carousel_item:
            body["is_carousel_item"] = True
        elif caption:
            body["caption"] = caption
        data = await self._call("POST", f"{self.account_id}/media", json=body)
        return self.object_id(data)

    async def create_carousel_container(
        self, children: list[str], caption: str | None = None
    ) -> str:
        body: dict[str, object] = {
            "media_type": "CAROUSEL",
            "children": ",".join(children),
            "access_token": self.access_token,
        }
        if caption:
            body["caption"] = caption
        data = await self._call("POST", f"{self.account_id}/media", json=body)
        return self.object_id(data)

    async def get_container_status(self, container_id: str) -> str:
        data = await self._call(
            "GET",
            container_id,
            params={"fields": "status_code", "access_token": self.access_token},
        )
        return str(data.get("status_code") or "")

    async def wait_for_container(
        self, container_id: str, cancel: asyncio.Event | None = None
    ) -> None:
        """Poll until FINISHED. Raises GraphApiError on ERROR, EXPIRED, timeout or cancel."""
        for attempt in range(1, self.poll_max_attempts + 1):
            status = await self.get_container_status(container_id)
            logger.debug(
                "Container %s status=%s (%d/%d)",
                container_id,
                status,
                attempt,
                self.poll_max_attempts,
            )
            if status == ContainerStatus.FINISHED.value:
                return
            if status in (ContainerStatus.ERROR.value, ContainerStatus.EXPIRED.value):
                raise GraphApiError(
                    ErrorKind.publish_failed,
                    f"Container processing failed with status: {status}",
                )
            if attempt < self.poll_max_attempts and await _sleep_or_cancel(
                self.poll_interval, cancel
            ):
                raise GraphApiError(
                    ErrorKind.publish_failed, "Container polling cancelled"
                )

        raise GraphApiError(ErrorKind.publish_failed, "Container processing timed out")

    async def publish_container(self, container_id: str) -> str:
        data = await self._call(
            "POST",
            f"{self.account_id}/media_publish",
            json={"creation_id": container_id, "access_token": self.access_token},
        )
        logger.info("Instagram publish succeeded, media_id=%s", data.get("id"))
        return self.object_id(data)

    # ------------------------------------------------------------------
    # Whole flows
    # ------------------------------------------------------------------

    async def publish_post(
        self,
        media_urls: list[str],
        caption: str | None = None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> PublishResult:
        if not media_urls:
            return PublishResult.failed(ErrorKind.validation, "At least one media URL is required")
        if len(media_urls) > MAX_CAROUSEL_ITEMS:
            return PublishResult.failed(
                ErrorKind.validation,
                f"Instagram carousels accept at most {MAX_CAROUSEL_ITEMS} items",
            )

        try:
            if len(media_urls) > 1:
                # sequential; stops at the first failed child
                children = []
                for url in media_urls:
                    children.append(await self.create_container(url, is_carousel_item=True))
                container_id = await self.create_carousel_container(children, caption)
            else:
                container_id = await self.create_container(media_urls[0], caption)

            await self.wait_for_container(container_id, cancel)
            media_id = await self.publish_container(container_id)
        except GraphApiError as e:
            return e.to_result()

        return PublishResult(
            status=PostStatus.published,
            platform_post_id=media_id,
            platform_post_url=post_url(media_id),
        )

    async def get_media_metrics(self, media_id: str) -> MetricsResult:
        values = await self._insights(media_id, MEDIA_METRICS)
        likes = values.get("like_count")
        comments = values.get("comments_count")
        impressions = values.get("impressions")

        engagement = None
        if impressions and (likes or comments):
            engagement = ((likes or 0) + (comments or 0)) / impressions * 100

        return MetricsResult(
            like_count=likes,
            comments_count=comments,
            shares_count=values.get("shares_count"),
            saved_count=values.get("saved_count"),
            impressions=impressions,
            reach=values.get("reach"),
            engagement_rate=engagement,
            raw=values,
        )


async def _sleep_or_cancel(seconds: float, cancel: asyncio.Event | None) -> bool:
    """Sleep for `seconds`; return True early if `cancel` gets set."""
    if cancel is None:
        await asyncio.sleep(seconds)
        return False
    if cancel.is_set():
        return True
    try:
        await asyncio.wait_for(cancel.wait(), seconds)
    except asyncio.TimeoutError:
        return False
    return True
