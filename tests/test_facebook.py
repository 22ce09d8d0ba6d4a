from __future__ import annotations

from datetime import timedelta

import httpx
import pytest

from celine.publishing.db.models import utc_now
from celine.publishing.errors import ErrorKind, ValidationError
from celine.publishing.social.errors import classify_graph_error
from celine.publishing.social.facebook import FacebookClient, validate_schedule_window
from celine.publishing.social.models import Platform, PostStatus


def client(http) -> FacebookClient:
    return FacebookClient(http, "page-token", "page-1", base_url="https://graph.test")


async def test_immediate_photo_is_published(http, graph):
    graph.on("POST", "/page-1/photos", {"id": "photo-1", "post_id": "page-1_77"})

    result = await client(http).publish_photo("https://cdn.test/a.jpg", "hi")

    assert result.status == PostStatus.published
    assert result.platform_post_id == "page-1_77"
    assert result.platform_post_url == "https://www.facebook.com/page-1_77/"
    params = graph.calls("POST", "/page-1/photos")[0].url.params
    assert params["url"] == "https://cdn.test/a.jpg"
    assert params["message"] == "hi"
    assert params["published"] == "true"
    assert "scheduled_publish_time" not in params


async def test_future_photo_uses_native_scheduling(http, graph):
    graph.on("POST", "/page-1/photos", {"id": "photo-2"})
    now = utc_now()
    when = now + timedelta(hours=2)

    result = await client(http).publish_photo(
        "https://cdn.test/a.jpg", None, scheduled_for=when, now=now
    )

    assert result.status == PostStatus.scheduled
    assert result.platform_post_id == "photo-2"
    params = graph.calls("POST", "/page-1/photos")[0].url.params
    assert params["published"] == "false"
    assert params["scheduled_publish_time"] == str(int(when.timestamp()))
    assert "message" not in params


@pytest.mark.parametrize(
    "lead", [timedelta(minutes=5), timedelta(days=31), timedelta(minutes=-1)]
)
async def test_schedule_outside_window_makes_no_request(http, graph, lead):
    now = utc_now()

    result = await client(http).publish_photo(
        "https://cdn.test/a.jpg", scheduled_for=now + lead, now=now
    )

    assert result.error == ErrorKind.validation
    assert graph.requests == []


def test_schedule_window_bounds():
    now = utc_now()
    assert validate_schedule_window(now + timedelta(minutes=10), now) == int(
        (now + timedelta(minutes=10)).timestamp()
    )
    validate_schedule_window(now + timedelta(days=30), now)
    with pytest.raises(ValidationError):
        validate_schedule_window(now + timedelta(minutes=9, seconds=59), now)
    with pytest.raises(ValidationError):
        validate_schedule_window(now + timedelta(days=30, seconds=1), now)


@pytest.mark.parametrize(
    "error, kind",
    [
        ({"code": 190, "error_subcode": 458}, ErrorKind.token_expired),
        ({"code": 190, "error_subcode": 463}, ErrorKind.token_expired),
        ({"code": 190}, ErrorKind.auth_failed),
        ({"code": 190, "error_subcode": 467}, ErrorKind.auth_failed),
        ({"code": 4}, ErrorKind.rate_limited),
        ({"code": 200}, ErrorKind.permission_denied),
        ({"code": 100}, ErrorKind.invalid_media),
        ({"code": 2}, ErrorKind.publish_failed),
        ({"message": "no code"}, ErrorKind.publish_failed),
    ],
)
def test_facebook_error_table(error, kind):
    assert classify_graph_error(Platform.facebook, error) == kind


def test_instagram_ignores_subcodes():
    assert (
        classify_graph_error(Platform.instagram, {"code": 190, "error_subcode": 458})
        == ErrorKind.token_expired
    )


async def test_graph_error_becomes_failed_result(http, graph):
    graph.on(
        "POST",
        "/page-1/photos",
        lambda request: httpx.Response(
            400,
            json={"error": {"message": "Session expired", "code": 190, "error_subcode": 463}},
        ),
    )

    result = await client(http).publish_photo("https://cdn.test/a.jpg")

    assert result.error == ErrorKind.token_expired
    assert not result.retryable


async def test_non_json_error_is_publish_failed(http, graph):
    graph.on("POST", "/page-1/photos", lambda request: httpx.Response(502, text="bad gateway"))

    result = await client(http).publish_photo("https://cdn.test/a.jpg")

    assert result.error == ErrorKind.publish_failed
    assert result.retryable


async def test_post_metrics(http, graph):
    graph.on(
        "GET",
        "/page-1_77/insights",
        {
            "data": [
                {"name": "post_impressions", "values": [{"value": 200}]},
                {"name": "post_impressions_unique", "values": [{"value": 150}]},
                {"name": "post_reactions_like_total", "values": [{"value": 20}]},
                {"name": "post_comments", "values": [{"value": 3}]},
            ]
        },
    )

    metrics = await client(http).get_post_metrics("page-1_77")

    assert metrics.impressions == 200
    assert metrics.reach == 150
    assert metrics.comments_count == 3
    assert metrics.engagement_rate == pytest.approx(10.0)
