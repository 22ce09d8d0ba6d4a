"""Authentication for the HTTP surface.

User routes carry a JWT, validated by AuthMiddleware and attached to
request.state.user. Worker and cron routes are called by the external
scheduler with a shared secret instead; those paths bypass the middleware and
are guarded by `require_worker_secret`.
"""

from __future__ import annotations

import hmac
import logging
from typing import Awaitable, Callable

from fastapi import HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from celine.sdk.auth import JwtUser
from celine.publishing.config.settings import settings

logger = logging.getLogger(__name__)

# Routes that don't require a token (FastAPI / OpenAPI meta)
_OPEN_PATHS: frozenset[str] = frozenset(
    {
        "/docs",
        "/redoc",
        "/openapi.json",
        "/favicon.ico",
        "/health",
    }
)

# Shared-secret routes, checked by require_worker_secret
_SECRET_PATHS: frozenset[str] = frozenset({"/workers"})
_SECRET_PREFIXES: tuple[str, ...] = ("/workers/", "/cron/")


def _is_open(path: str) -> bool:
    """Return True if the path should bypass JWT auth."""
    if path in _OPEN_PATHS:
        return True
    if path in _SECRET_PATHS or path.startswith(_SECRET_PREFIXES):
        return True
    return False


class AuthMiddleware(BaseHTTPMiddleware):
    """Starlette middleware that validates JWT on every protected route."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        if _is_open(request.url.path):
            return await call_next(request)

        auth_header = request.headers.get("Authorization", "")
        if not auth_header:
            return JSONResponse(
                status_code=401,
                content={"detail": "Missing Authorization header"},
                headers={"WWW-Authenticate": "Bearer"},
            )

        try:
            user = JwtUser.from_token(auth_header, settings.oidc)
        except Exception as exc:
            logger.warning("JWT validation failed: %s", exc)
            return JSONResponse(
                status_code=401,
                content={"detail": "Invalid or expired token"},
                headers={"WWW-Authenticate": "Bearer"},
            )

        request.state.user = user
        return await call_next(request)


def _bearer(request: Request) -> str:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return token.strip()


def require_worker_secret(request: Request) -> None:
    """Accept `Authorization: Bearer <WORKER_SECRET or CRON_SECRET>`."""
    token = _bearer(request)
    cfg = getattr(request.app.state, "settings", settings)
    secrets = [s for s in (cfg.WORKER_SECRET, cfg.CRON_SECRET) if s]
    if not secrets:
        logger.error("Neither WORKER_SECRET nor CRON_SECRET is configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Worker secret not configured",
        )
    if not token or not any(
        hmac.compare_digest(token.encode(), s.encode()) for s in secrets
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
