"""Worker dispatch loop.

One tick = reserve one job, run its handler, record the outcome. Dispatchers
share nothing in-process; any number of them may tick concurrently.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from celine.publishing.config.settings import Settings
from celine.publishing.db.models import Job
from celine.publishing.jobs.base import HandlerContext, JobOutcome
from celine.publishing.jobs.models import JobStatus
from celine.publishing.jobs.registry import HandlerRegistry
from celine.publishing.jobs.signal import Signal
from celine.publishing.jobs.store import (
    increment_job_attempts,
    requeue_job,
    reserve_next_job,
    update_job_status,
)

logger = logging.getLogger(__name__)

RETRYING = "retrying"


@dataclass(frozen=True)
class TickReport:
    processed: bool
    job_id: str | None = None
    type: str | None = None
    status: str | None = None  # completed | failed | retrying
    attempt: int | None = None
    error: str | None = None
    retry_in_seconds: float | None = None
    duration_ms: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class Dispatcher:
    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        registry: HandlerRegistry,
        http: httpx.AsyncClient,
        settings: Settings,
    ):
        self.sessions = sessions
        self.registry = registry
        self.http = http
        self.settings = settings

    def retry_delay(self, attempts: int) -> float:
        base = self.settings.RETRY_BACKOFF_BASE_SECONDS
        if base <= 0:
            return 0
        return float(base**attempts)

    async def tick(self) -> TickReport:
        async with self.sessions() as db:
            job = await reserve_next_job(db)
        if job is None:
            return TickReport(processed=False)

        logger.info(
            "Processing job id=%s type=%s attempt=%d/%d",
            job.id,
            job.type,
            job.attempts + 1,
            job.max_attempts,
        )
        started = time.monotonic()
        outcome = await self._run(job)
        report = await self._finalize(job, outcome)
        return TickReport(
            **{**report.as_dict(), "duration_ms": (time.monotonic() - started) * 1000}
        )

    async def drain(self, max_jobs: int) -> list[TickReport]:
        """Tick until the queue is idle or `max_jobs` jobs were handled."""
        reports: list[TickReport] = []
        for _ in range(max_jobs):
            report = await self.tick()
            if not report.processed:
                break
            reports.append(report)
        return reports

    async def _run(self, job: Job) -> JobOutcome:
        ctx = HandlerContext(
            sessions=self.sessions,
            http=self.http,
            settings=self.settings,
            job=job,
        )
        try:
            handler = self.registry.resolve(job.type)
            return await handler(ctx, dict(job.payload or {}))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Job %s (%s) raised", job.id, job.type)
            return JobOutcome.from_exception(e)

    async def _finalize(self, job: Job, outcome: JobOutcome) -> TickReport:
        async with self.sessions() as db:
            if outcome.ok:
                await update_job_status(
                    db, job.id, JobStatus.completed, result=outcome.result
                )
                logger.info("Job %s completed", job.id)
                return TickReport(
                    processed=True,
                    job_id=job.id,
                    type=job.type,
                    status=JobStatus.completed.value,
                    attempt=job.attempts + 1,
                )

            error = outcome.describe()
            attempts = await increment_job_attempts(db, job.id)

            if outcome.retryable and attempts < job.max_attempts:
                delay = self.retry_delay(attempts)
                if await requeue_job(db, job.id, delay_seconds=delay, error=error):
                    logger.warning(
                        "Job %s failed (%s), retry %d/%d in %ss",
                        job.id,
                        error,
                        attempts,
                        job.max_attempts,
                        delay,
                    )
                    return TickReport(
                        processed=True,
                        job_id=job.id,
                        type=job.type,
                        status=RETRYING,
                        attempt=attempts,
                        error=error,
                        retry_in_seconds=delay,
                    )

            await update_job_status(db, job.id, JobStatus.failed, error=error)
            logger.error(
                "Job %s failed permanently after %d attempt(s): %s",
                job.id,
                attempts,
                error,
            )
            return TickReport(
                processed=True,
                job_id=job.id,
                type=job.type,
                status=JobStatus.failed.value,
                attempt=attempts,
                error=error,
            )


async def _wait_for_work(signal: Signal, timeout: float) -> bool:
    try:
        return await signal.wait(timeout)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.warning("Accelerator wait failed, polling instead: %s", e)
        await asyncio.sleep(timeout)
        return False


async def run_forever(
    dispatcher: Dispatcher,
    signal: Signal,
    *,
    poll_seconds: float,
    stop: asyncio.Event,
) -> None:
    """Tick while there is work; otherwise sleep on the signal or the poll interval."""
    while not stop.is_set():
        try:
            report = await dispatcher.tick()
        except asyncio.CancelledError:
            raise
        except Exception:
            # store unreachable; back off and try again
            logger.exception("Dispatcher tick failed")
            report = TickReport(processed=False)

        if report.processed:
            continue

        waiter = asyncio.create_task(_wait_for_work(signal, poll_seconds))
        stopper = asyncio.create_task(stop.wait())
        try:
            await asyncio.wait({waiter, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (waiter, stopper):
                if not task.done():
                    task.cancel()
            await asyncio.gather(waiter, stopper, return_exceptions=True)
