"""Graph API error classification.

Each platform has a static table keyed by (code, error_subcode). A subcode
entry wins over the bare code entry; anything unmapped is publish_failed.
"""

from __future__ import annotations

from typing import Any, Mapping

from celine.publishing.errors import ErrorKind
from celine.publishing.social.models import Platform

ErrorTable = Mapping[tuple[int, int | None], ErrorKind]

INSTAGRAM_ERRORS: ErrorTable = {
    (190, None): ErrorKind.token_expired,
    (4, None): ErrorKind.rate_limited,
    (200, None): ErrorKind.permission_denied,
    (100, None): ErrorKind.invalid_media,
}

FACEBOOK_ERRORS: ErrorTable = {
    (190, 458): ErrorKind.token_expired,
    (190, 463): ErrorKind.token_expired,
    (190, None): ErrorKind.auth_failed,
    (4, None): ErrorKind.rate_limited,
    (200, None): ErrorKind.permission_denied,
    (100, None): ErrorKind.invalid_media,
}

_TABLES: dict[Platform, ErrorTable] = {
    Platform.instagram: INSTAGRAM_ERRORS,
    Platform.facebook: FACEBOOK_ERRORS,
}


def _as_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def classify_graph_error(platform: Platform, error: Mapping[str, Any]) -> ErrorKind:
    """Map a Graph `error` object to an ErrorKind."""
    table = _TABLES[platform]
    code = _as_int(error.get("code"))
    subcode = _as_int(error.get("error_subcode"))
    if code is None:
        return ErrorKind.publish_failed
    if subcode is not None and (code, subcode) in table:
        return table[(code, subcode)]
    return table.get((code, None), ErrorKind.publish_failed)
