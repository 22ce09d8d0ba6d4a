"""Connection guard: credential precondition for every platform call."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from celine.publishing.db.models import SocialConnection, as_utc, utc_now
from celine.publishing.errors import AuthError, TokenExpiredError
from celine.publishing.social.models import ConnectionStatus, Platform

logger = logging.getLogger(__name__)


class ConnectionGuard:
    def __init__(self, buffer_hours: int = 24):
        self.buffer = timedelta(hours=buffer_hours)

    def is_expired(self, connection: SocialConnection, now: datetime | None = None) -> bool:
        """True when the token expires within the safety buffer."""
        expires_at = as_utc(connection.token_expires_at)
        if expires_at is None:
            return False
        return expires_at < (now or utc_now()) + self.buffer

    async def acquire(
        self,
        db: AsyncSession,
        user_id: str,
        platform: Platform | str,
        now: datetime | None = None,
    ) -> SocialConnection:
        """Return the usable connection or raise. No network call happens here."""
        platform = Platform(platform)
        result = await db.execute(
            select(SocialConnection)
            .where(
                SocialConnection.user_id == user_id,
                SocialConnection.platform == platform.value,
            )
            .execution_options(populate_existing=True)
        )
        connection = result.scalar_one_or_none()

        if connection is None or connection.deleted_at is not None:
            raise AuthError(f"No {platform.value} account connected")
        if connection.status == ConnectionStatus.expired.value:
            raise TokenExpiredError(
                f"{platform.value} token expired, reconnect required"
            )
        if connection.status != ConnectionStatus.active.value:
            raise AuthError(
                f"{platform.value} connection is {connection.status}, reconnect required"
            )
        if self.is_expired(connection, now):
            await mark_expired(db, connection.id)
            raise TokenExpiredError(
                f"{platform.value} token expires at {connection.token_expires_at}, reconnect required"
            )
        return connection


async def mark_expired(db: AsyncSession, connection_id: str) -> bool:
    """Flip a connection to expired. Returns True only for the call that flipped it."""
    res = await db.execute(
        update(SocialConnection)
        .where(
            SocialConnection.id == connection_id,
            SocialConnection.status != ConnectionStatus.expired.value,
        )
        .values(status=ConnectionStatus.expired.value, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    flipped = res.rowcount > 0
    if flipped:
        logger.warning("Social connection %s marked expired", connection_id)
    return flipped
