"""Worker process commands.

publishing-cli worker run   – long-running dispatch loop(s)
publishing-cli worker tick  – process at most one job and exit
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal as os_signal
from typing import Optional

import httpx
import typer

from celine.publishing.config.settings import settings
from celine.publishing.db.session import AsyncSessionLocal
from celine.publishing.jobs.dispatcher import Dispatcher, run_forever
from celine.publishing.jobs.registry import build_registry
from celine.publishing.jobs.signal import build_signal

worker_app = typer.Typer(add_completion=False, help="Run job workers")

logger = logging.getLogger(__name__)


async def _run(concurrency: int, poll_seconds: float) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (os_signal.SIGINT, os_signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    accelerator = build_signal(settings)
    registry = build_registry()
    async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS) as http:
        dispatcher = Dispatcher(AsyncSessionLocal, registry, http, settings)
        logger.info(
            "Starting %d worker loop(s), poll=%ss, accelerator=%s",
            concurrency,
            poll_seconds,
            settings.ACCELERATOR,
        )
        try:
            await asyncio.gather(
                *(
                    run_forever(dispatcher, accelerator, poll_seconds=poll_seconds, stop=stop)
                    for _ in range(concurrency)
                )
            )
        finally:
            await accelerator.close()
    logger.info("Workers stopped")


async def _tick() -> dict:
    async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS) as http:
        dispatcher = Dispatcher(AsyncSessionLocal, build_registry(), http, settings)
        report = await dispatcher.tick()
    return report.as_dict()


@worker_app.command("run")
def run(
    concurrency: int = typer.Option(1, "--concurrency", "-c", min=1, help="Parallel loops."),
    poll_seconds: Optional[float] = typer.Option(
        None, "--poll-seconds", help="Idle poll interval (default WORKER_POLL_SECONDS)."
    ),
) -> None:
    """Reserve and run jobs until interrupted."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    asyncio.run(_run(concurrency, poll_seconds or settings.WORKER_POLL_SECONDS))


@worker_app.command("tick")
def tick() -> None:
    """Process at most one job."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    report = asyncio.run(_tick())
    if not report["processed"]:
        typer.echo("No jobs to process")
        return
    typer.echo(json.dumps(report, indent=2))
