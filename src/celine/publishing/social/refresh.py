"""Long-lived Meta token refresh.

Runs daily from the scheduler. Every active connection whose token expires
inside the refresh window gets its user token exchanged for a fresh long-lived
one (`fb_exchange_token`); when the connection publishes through a Page, the
Page access token is fetched again with the new user token. Tokens are stored
encrypted. Connections already marked expired are left to the user to
reconnect.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import httpx
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from celine.publishing.config.settings import Settings
from celine.publishing.db.models import SocialConnection, utc_now
from celine.publishing.errors import AuthError, ErrorKind, PublishingError
from celine.publishing.social.crypto import TokenCipher
from celine.publishing.social.graph import GraphApiError, GraphClient
from celine.publishing.social.guard import mark_expired
from celine.publishing.social.models import ConnectionStatus, Platform

logger = logging.getLogger(__name__)

# Meta's answer omits expires_in for some grants; long-lived tokens last 60 days
DEFAULT_TOKEN_LIFETIME_SECONDS = 60 * 24 * 60 * 60


class TokenExchangeClient(GraphClient):
    """OAuth calls against the Graph API, authenticated with the app credentials."""

    platform = Platform.facebook

    def __init__(
        self,
        http: httpx.AsyncClient,
        app_id: str,
        app_secret: str,
        **kwargs: Any,
    ):
        super().__init__(http, "", "", **kwargs)
        self.app_id = app_id
        self.app_secret = app_secret

    async def exchange_user_token(self, user_token: str) -> tuple[str, int]:
        """Return a fresh long-lived user token and its lifetime in seconds."""
        data = await self._call(
            "GET",
            "oauth/access_token",
            params={
                "grant_type": "fb_exchange_token",
                "client_id": self.app_id,
                "client_secret": self.app_secret,
                "fb_exchange_token": user_token,
            },
        )
        token = data.get("access_token")
        if not token:
            raise AuthError("Token exchange returned no access_token")
        return str(token), int(data.get("expires_in") or DEFAULT_TOKEN_LIFETIME_SECONDS)

    async def page_access_token(self, user_token: str, page_id: str) -> str | None:
        data = await self._call(
            "GET",
            "me/accounts",
            params={"fields": "id,access_token", "access_token": user_token},
        )
        for page in data.get("data") or []:
            if str(page.get("id")) == page_id:
                return page.get("access_token") or None
        return None


@dataclass
class RefreshReport:
    processed: int = 0
    refreshed: int = 0
    updated_page_tokens: int = 0
    skipped: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "refreshed": self.refreshed,
            "updated_page_tokens": self.updated_page_tokens,
            "skipped": self.skipped,
            "errors": list(self.errors),
        }


def page_of(connection: SocialConnection) -> str | None:
    """The Page whose token the connection publishes with, if any."""
    if connection.page_id:
        return connection.page_id
    if connection.platform == Platform.facebook.value:
        return connection.account_id
    return None


async def select_refreshable(
    db: AsyncSession, *, now: datetime, window: timedelta
) -> list[SocialConnection]:
    result = await db.execute(
        select(SocialConnection)
        .where(
            SocialConnection.status == ConnectionStatus.active.value,
            SocialConnection.deleted_at.is_(None),
            or_(
                SocialConnection.token_expires_at.is_(None),
                SocialConnection.token_expires_at <= now + window,
            ),
        )
        .order_by(SocialConnection.token_expires_at.asc())
    )
    return list(result.scalars().all())


async def refresh_connection(
    client: TokenExchangeClient,
    cipher: TokenCipher,
    connection: SocialConnection,
    *,
    now: datetime,
) -> dict[str, Any] | None:
    """Exchange the tokens of one connection. Returns the column values to store."""
    user_token = cipher.decrypt(connection.user_access_token or connection.access_token)
    if not user_token:
        return None

    new_user_token, expires_in = await client.exchange_user_token(user_token)
    values: dict[str, Any] = {
        "user_access_token": cipher.encrypt(new_user_token),
        "token_expires_at": now + timedelta(seconds=expires_in),
        "last_verified_at": now,
        "updated_at": now,
    }

    page_id = page_of(connection)
    if page_id is None:
        values["access_token"] = cipher.encrypt(new_user_token)
        return values

    page_token = await client.page_access_token(new_user_token, page_id)
    if page_token:
        values["access_token"] = cipher.encrypt(page_token)
    else:
        logger.warning(
            "Page %s not listed for connection %s; keeping the stored page token",
            page_id,
            connection.id,
        )
    return values


async def refresh_connections(
    sessions: async_sessionmaker[AsyncSession],
    http: httpx.AsyncClient,
    settings: Settings,
    *,
    now: datetime | None = None,
) -> RefreshReport:
    if not settings.META_APP_ID or not settings.META_APP_SECRET:
        raise AuthError("Meta OAuth not configured")

    now = now or utc_now()
    window = timedelta(days=settings.TOKEN_REFRESH_WINDOW_DAYS)
    cipher = TokenCipher(settings.TOKEN_ENCRYPTION_KEY)
    client = TokenExchangeClient(
        http,
        settings.META_APP_ID,
        settings.META_APP_SECRET,
        base_url=settings.GRAPH_API_BASE_URL,
        api_version=settings.GRAPH_API_VERSION,
    )

    async with sessions() as db:
        connections = await select_refreshable(db, now=now, window=window)

    report = RefreshReport(processed=len(connections))
    for connection in connections:
        try:
            values = await refresh_connection(client, cipher, connection, now=now)
        except (GraphApiError, PublishingError) as e:
            logger.warning("Token refresh failed for connection %s: %s", connection.id, e)
            report.errors.append({"connection_id": connection.id, "error": str(e)})
            if isinstance(e, GraphApiError) and e.kind == ErrorKind.token_expired:
                async with sessions() as db:
                    await mark_expired(db, connection.id)
            continue
        if values is None:
            report.skipped += 1
            continue

        async with sessions() as db:
            # a concurrent expiry or disconnect wins over the refresh
            res = await db.execute(
                update(SocialConnection)
                .where(
                    SocialConnection.id == connection.id,
                    SocialConnection.status == ConnectionStatus.active.value,
                    SocialConnection.deleted_at.is_(None),
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        if res.rowcount == 0:
            report.skipped += 1
            continue

        report.refreshed += 1
        if page_of(connection) is not None and "access_token" in values:
            report.updated_page_tokens += 1
        logger.info(
            "Refreshed %s token for connection %s, valid until %s",
            connection.platform,
            connection.id,
            values["token_expires_at"],
        )

    logger.info(
        "Token refresh: %d refreshed, %d skipped, %d errors",
        report.refreshed,
        report.skipped,
        len(report.errors),
    )
    return report
