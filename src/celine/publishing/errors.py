"""Error taxonomy shared by the job engine, the platform adapters and the API.

Every expected failure carries an `ErrorKind`. The dispatcher uses the kind to
decide between retry and terminal failure; routes use it to pick a status code.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    validation = "validation"
    auth_failed = "auth_failed"
    token_expired = "token_expired"
    rate_limited = "rate_limited"
    permission_denied = "permission_denied"
    invalid_media = "invalid_media"
    publish_failed = "publish_failed"
    network_error = "network_error"
    job_creation_failed = "job_creation_failed"
    unknown_job_type = "unknown_job_type"
    not_found = "not_found"


RETRYABLE: frozenset[ErrorKind] = frozenset(
    {ErrorKind.rate_limited, ErrorKind.network_error, ErrorKind.publish_failed}
)


def is_retryable(kind: ErrorKind) -> bool:
    return kind in RETRYABLE


class PublishingError(Exception):
    kind: ErrorKind = ErrorKind.publish_failed

    def __init__(self, message: str = "", *, kind: ErrorKind | None = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        if kind is not None:
            self.kind = kind

    @property
    def retryable(self) -> bool:
        return is_retryable(self.kind)


class ValidationError(PublishingError):
    kind = ErrorKind.validation


class NotFoundError(PublishingError):
    kind = ErrorKind.not_found


class AuthError(PublishingError):
    """Missing, revoked or unusable credentials. Reconnect required."""

    kind = ErrorKind.auth_failed


class TokenExpiredError(AuthError):
    kind = ErrorKind.token_expired


class RateLimitedError(PublishingError):
    kind = ErrorKind.rate_limited


class PermissionDeniedError(PublishingError):
    kind = ErrorKind.permission_denied


class InvalidMediaError(PublishingError):
    kind = ErrorKind.invalid_media


class PublishFailedError(PublishingError):
    kind = ErrorKind.publish_failed


class NetworkError(PublishingError):
    kind = ErrorKind.network_error


class JobCreationFailedError(PublishingError):
    kind = ErrorKind.job_creation_failed


class UnknownJobTypeError(PublishingError):
    kind = ErrorKind.unknown_job_type


_BY_KIND: dict[ErrorKind, type[PublishingError]] = {
    ErrorKind.validation: ValidationError,
    ErrorKind.not_found: NotFoundError,
    ErrorKind.auth_failed: AuthError,
    ErrorKind.token_expired: TokenExpiredError,
    ErrorKind.rate_limited: RateLimitedError,
    ErrorKind.permission_denied: PermissionDeniedError,
    ErrorKind.invalid_media: InvalidMediaError,
    ErrorKind.publish_failed: PublishFailedError,
    ErrorKind.network_error: NetworkError,
    ErrorKind.job_creation_failed: JobCreationFailedError,
    ErrorKind.unknown_job_type: UnknownJobTypeError,
}


def error_for(kind: ErrorKind, message: str = "") -> PublishingError:
    """Build the exception class matching `kind`."""
    return _BY_KIND[kind](message)
