"""Accelerator signal: wakes an idle worker right after a job is created.

The signal never carries authority. A worker that wakes up still reserves
through the job store, and a lost notification only costs one poll interval.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Protocol

from redis.asyncio import Redis

from celine.publishing.config.settings import Settings

logger = logging.getLogger(__name__)


class Signal(Protocol):
    async def notify(self, job_id: str, priority: int = 0) -> None: ...

    async def wait(self, timeout: float) -> bool: ...

    async def close(self) -> None: ...


class NullSignal:
    """Disabled accelerator: workers rely on polling and scheduler ticks."""

    async def notify(self, job_id: str, priority: int = 0) -> None:
        return None

    async def wait(self, timeout: float) -> bool:
        await asyncio.sleep(timeout)
        return False

    async def close(self) -> None:
        return None


class LocalSignal:
    """In-process signal for a single API+worker process (development)."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    async def notify(self, job_id: str, priority: int = 0) -> None:
        self._event.set()

    async def wait(self, timeout: float) -> bool:
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        self._event.clear()
        return True

    async def close(self) -> None:
        return None


class RedisSignal:
    """Cross-process signal over a Redis list (LPUSH to wake, BRPOP to wait)."""

    def __init__(self, redis: Redis, key: str = "publishing:jobs:wake"):
        self.redis = redis
        self.key = key

    @classmethod
    def from_url(cls, url: str, key: str = "publishing:jobs:wake") -> RedisSignal:
        return cls(Redis.from_url(url), key)

    async def notify(self, job_id: str, priority: int = 0) -> None:
        await self.redis.lpush(self.key, json.dumps({"job_id": job_id, "priority": priority}))

    async def wait(self, timeout: float) -> bool:
        # BRPOP takes whole seconds; 0 would block forever
        item = await self.redis.brpop([self.key], timeout=max(1, int(timeout)))
        if item is None:
            return False
        logger.debug("Woken by accelerator: %s", item[1])
        return True

    async def close(self) -> None:
        await self.redis.aclose()


def build_signal(settings: Settings) -> Signal:
    if settings.ACCELERATOR == "redis":
        logger.info("Accelerator signal: redis (%s)", settings.REDIS_WAKE_KEY)
        return RedisSignal.from_url(settings.REDIS_URL, settings.REDIS_WAKE_KEY)
    if settings.ACCELERATOR == "local":
        logger.info("Accelerator signal: in-process")
        return LocalSignal()
    return NullSignal()
