from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select

from celine.publishing.db.models import SocialConnection, utc_now
from celine.publishing.errors import AuthError, TokenExpiredError
from celine.publishing.social.crypto import TokenCipher, generate_key
from celine.publishing.social.guard import ConnectionGuard, mark_expired

from conftest import add_connection


async def _status(db, connection_id):
    result = await db.execute(
        select(SocialConnection.status).where(SocialConnection.id == connection_id)
    )
    return result.scalar_one()


async def test_active_connection_is_returned(db):
    conn = await add_connection(db, token_expires_at=utc_now() + timedelta(days=10))
    got = await ConnectionGuard(24).acquire(db, "user-1", "instagram")
    assert got.id == conn.id


async def test_connection_without_expiry_is_usable(db):
    await add_connection(db, token_expires_at=None)
    assert await ConnectionGuard(24).acquire(db, "user-1", "instagram")


async def test_missing_connection(db):
    with pytest.raises(AuthError) as exc:
        await ConnectionGuard().acquire(db, "user-1", "facebook")
    assert not isinstance(exc.value, TokenExpiredError)


async def test_deleted_connection_counts_as_missing(db):
    await add_connection(db)
    conn = (await db.execute(select(SocialConnection))).scalar_one()
    conn.deleted_at = utc_now()
    await db.commit()
    with pytest.raises(AuthError):
        await ConnectionGuard().acquire(db, "user-1", "instagram")


async def test_revoked_connection_is_auth_failure(db):
    await add_connection(db, status="revoked")
    with pytest.raises(AuthError) as exc:
        await ConnectionGuard().acquire(db, "user-1", "instagram")
    assert not isinstance(exc.value, TokenExpiredError)


async def test_token_inside_buffer_is_marked_expired(db):
    conn = await add_connection(db, token_expires_at=utc_now() + timedelta(hours=3))

    with pytest.raises(TokenExpiredError):
        await ConnectionGuard(24).acquire(db, "user-1", "instagram")

    assert await _status(db, conn.id) == "expired"

    with pytest.raises(TokenExpiredError):
        await ConnectionGuard(24).acquire(db, "user-1", "instagram")


async def test_mark_expired_flips_once(db):
    conn = await add_connection(db)
    assert await mark_expired(db, conn.id)
    assert not await mark_expired(db, conn.id)


def test_is_expired_uses_buffer():
    now = utc_now()
    guard = ConnectionGuard(24)
    soon = SocialConnection(token_expires_at=now + timedelta(hours=23))
    later = SocialConnection(token_expires_at=now + timedelta(hours=25))
    assert guard.is_expired(soon, now)
    assert not guard.is_expired(later, now)


def test_cipher_round_trip_and_plaintext_passthrough():
    cipher = TokenCipher(generate_key())
    stored = cipher.encrypt("secret-token")
    assert stored != "secret-token"
    assert cipher.decrypt(stored) == "secret-token"
    assert cipher.decrypt("legacy-plain-token") == "legacy-plain-token"


def test_cipher_rejects_foreign_or_keyless_tokens():
    stored = TokenCipher(generate_key()).encrypt("secret-token")
    with pytest.raises(AuthError):
        TokenCipher(generate_key()).decrypt(stored)
    with pytest.raises(AuthError):
        TokenCipher(None).decrypt(stored)
    assert TokenCipher("").encrypt("plain") == "plain"
