from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx

from celine.publishing.errors import ErrorKind
from celine.publishing.social.errors import classify_graph_error
from celine.publishing.social.models import Platform, PublishResult

logger = logging.getLogger(__name__)

GRAPH_API_BASE_URL = "https://graph.facebook.com"
GRAPH_API_VERSION = "v22.0"


class GraphApiError(Exception):
    """Classified Graph failure. Stays inside the adapters."""

    def __init__(self, kind: ErrorKind, message: str, details: Mapping[str, Any] | None = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details = dict(details or {})

    def to_result(self) -> PublishResult:
        return PublishResult.failed(self.kind, self.message)


class GraphClient:
    platform: Platform

    def __init__(
        self,
        http: httpx.AsyncClient,
        access_token: str,
        account_id: str,
        *,
        base_url: str = GRAPH_API_BASE_URL,
        api_version: str = GRAPH_API_VERSION,
    ):
        self.http = http
        self.access_token = access_token
        self.account_id = account_id
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version

    def url(self, path: str) -> str:
        return f"{self.base_url}/{self.api_version}/{path.lstrip('/')}"

    async def _call(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        try:
            response = await self.http.request(
                method,
                self.url(path),
                params=params,
                json=json,
            )
        except httpx.TransportError as e:
            logger.warning("%s %s transport error: %s", self.platform.value, path, e)
            raise GraphApiError(ErrorKind.network_error, f"Network error: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise GraphApiError(
                ErrorKind.publish_failed,
                f"Unexpected response ({response.status_code}) from Graph API",
            ) from e

        if isinstance(data, dict) and data.get("error"):
            error = data["error"]
            kind = classify_graph_error(self.platform, error)
            logger.error(
                "%s Graph error on %s: code=%s subcode=%s kind=%s message=%s",
                self.platform.value,
                path,
                error.get("code"),
                error.get("error_subcode"),
                kind.value,
                error.get("message"),
            )
            raise GraphApiError(kind, error.get("message") or kind.value, error)

        if response.status_code >= 400:
            raise GraphApiError(
                ErrorKind.publish_failed,
                f"Graph API returned HTTP {response.status_code}",
            )
        if not isinstance(data, dict):
            raise GraphApiError(
                ErrorKind.publish_failed,
                f"Unexpected {type(data).__name__} body from Graph API",
            )
        return data

    @staticmethod
    def object_id(data: Mapping[str, Any], *keys: str) -> str:
        """First non-empty id among `keys` (default `id`)."""
        for key in keys or ("id",):
            value = data.get(key)
            if value:
                return str(value)
        raise GraphApiError(ErrorKind.publish_failed, "Graph API response carried no id")

    async def _insights(self, object_id: str, metrics: list[str]) -> dict[str, Any]:
        """Fetch `/insights` and flatten to {name: first value}."""
        data = await self._call(
            "GET",
            f"{object_id}/insights",
            params={"metric": ",".join(metrics), "access_token": self.access_token},
        )
        values: dict[str, Any] = {}
        for metric in data.get("data") or []:
            points = metric.get("values") or []
            if points:
                values[metric.get("name")] = points[0].get("value")
        return values
