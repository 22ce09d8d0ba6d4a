from __future__ import annotations

import asyncio
import json
from datetime import timedelta

import typer

from celine.publishing.config.settings import settings
from celine.publishing.db.models import utc_now
from celine.publishing.db.session import AsyncSessionLocal
from celine.publishing.api.schemas import JobOut
from celine.publishing.jobs.models import JobType
from celine.publishing.jobs.signal import build_signal
from celine.publishing.jobs.store import create_job, get_job, queue_counts

jobs_app = typer.Typer(add_completion=False, help="Inspect and enqueue jobs")


@jobs_app.command("enqueue")
def enqueue(
    job_type: JobType = typer.Argument(..., help="Job type"),
    user_id: str = typer.Option(..., "--user", "-u", help="Owner user id."),
    payload: str = typer.Option("{}", "--payload", "-p", help="JSON payload."),
    priority: int = typer.Option(0, "--priority"),
    delay_seconds: int = typer.Option(0, "--delay-seconds", min=0),
    max_attempts: int = typer.Option(settings.DEFAULT_MAX_ATTEMPTS, "--max-attempts", min=1),
) -> None:
    """Insert a pending job."""
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        typer.echo(f"Error: --payload is not valid JSON: {e}", err=True)
        raise typer.Exit(1)

    async def _enqueue() -> str:
        accelerator = build_signal(settings)
        try:
            async with AsyncSessionLocal() as db:
                return await create_job(
                    db,
                    user_id,
                    job_type,
                    data,
                    priority=priority,
                    scheduled_for=utc_now() + timedelta(seconds=delay_seconds)
                    if delay_seconds
                    else None,
                    max_attempts=max_attempts,
                    signal=accelerator,
                )
        finally:
            await accelerator.close()

    typer.echo(asyncio.run(_enqueue()))


@jobs_app.command("status")
def status(job_id: str = typer.Argument(...)) -> None:
    """Print one job as JSON."""

    async def _get():
        async with AsyncSessionLocal() as db:
            return await get_job(db, job_id)

    job = asyncio.run(_get())
    if job is None:
        typer.echo(f"Job {job_id} not found", err=True)
        raise typer.Exit(1)
    typer.echo(JobOut.model_validate(job).model_dump_json(indent=2))


@jobs_app.command("counts")
def counts() -> None:
    """Queue size per status."""

    async def _counts():
        async with AsyncSessionLocal() as db:
            return await queue_counts(db)

    for name, n in asyncio.run(_counts()).items():
        typer.echo(f"  {name:<12} {n}")
