from __future__ import annotations

import logging
from typing import Dict, Mapping

from celine.publishing.errors import UnknownJobTypeError
from celine.publishing.jobs.base import Handler
from celine.publishing.jobs.models import JobType

logger = logging.getLogger(__name__)


class HandlerRegistry:
    """Closed table JobType -> handler, built once at startup."""

    def __init__(self, handlers: Mapping[JobType, Handler]):
        self._handlers: Dict[JobType, Handler] = dict(handlers)

    def resolve(self, job_type: JobType | str) -> Handler:
        try:
            return self._handlers[JobType(job_type)]
        except (KeyError, ValueError) as e:
            raise UnknownJobTypeError(
                f"No handler registered for job type={job_type}"
            ) from e

    def missing(self) -> list[JobType]:
        return [t for t in JobType if t not in self._handlers]

    def __contains__(self, job_type: object) -> bool:
        return job_type in self._handlers


def default_handlers() -> Dict[JobType, Handler]:
    from celine.publishing.social.handlers import publish_facebook, publish_instagram
    from celine.publishing.social.metrics import fetch_social_metrics

    return {
        JobType.social_publish_instagram: publish_instagram,
        JobType.social_publish_facebook: publish_facebook,
        JobType.social_metrics_fetch: fetch_social_metrics,
    }


def build_registry(extra: Mapping[JobType, Handler] | None = None) -> HandlerRegistry:
    """Social handlers plus whatever the host application registers.

    Content pipeline types have no handler here; a job of such a type fails
    with UnknownJobTypeError until the host registers one.
    """
    handlers = default_handlers()
    handlers.update(extra or {})
    registry = HandlerRegistry(handlers)

    missing = registry.missing()
    if missing:
        logger.info(
            "No handler for %d job types: %s",
            len(missing),
            ", ".join(t.value for t in missing),
        )
    return registry
