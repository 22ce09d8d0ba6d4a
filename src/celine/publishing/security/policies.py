"""FastAPI authorization dependencies."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from celine.sdk.auth import JwtUser


def get_current_user(request: Request) -> JwtUser:
    """Inject the JwtUser attached by AuthMiddleware. Always present on protected routes."""
    user: JwtUser | None = getattr(request.state, "user", None)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user
