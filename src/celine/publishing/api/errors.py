"""Translate PublishingError into HTTP responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from celine.publishing.errors import ErrorKind, PublishingError

logger = logging.getLogger(__name__)

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.validation: status.HTTP_400_BAD_REQUEST,
    ErrorKind.invalid_media: status.HTTP_400_BAD_REQUEST,
    ErrorKind.unknown_job_type: status.HTTP_400_BAD_REQUEST,
    ErrorKind.auth_failed: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.token_expired: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.permission_denied: status.HTTP_403_FORBIDDEN,
    ErrorKind.not_found: status.HTTP_404_NOT_FOUND,
    ErrorKind.rate_limited: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorKind.publish_failed: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.network_error: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.job_creation_failed: status.HTTP_503_SERVICE_UNAVAILABLE,
}


async def publishing_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, PublishingError)
    code = STATUS_BY_KIND.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
    if code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=code,
        content={"detail": exc.message, "code": exc.kind.value},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PublishingError, publishing_error_handler)
