from __future__ import annotations

import asyncio
from typing import Optional

import typer

from celine.publishing.db.session import AsyncSessionLocal
from celine.publishing.schedules.registry import (
    DEFAULT_SCHEDULES,
    list_schedules,
    remove_schedule,
    upsert_schedule,
)

schedules_app = typer.Typer(add_completion=False, help="Track external cron registrations")


@schedules_app.command("set")
def set_schedule(
    name: str = typer.Argument(..., help="Logical job name, e.g. workers"),
    schedule_id: str = typer.Option(..., "--schedule-id", help="Id issued by the scheduler."),
    cron: Optional[str] = typer.Option(None, "--cron", help="Cron expression (defaults for known names)."),
    destination: str = typer.Option(..., "--destination", help="URL the scheduler calls."),
) -> None:
    """Record (or replace) the schedule registered for NAME."""
    if cron is None:
        if name not in DEFAULT_SCHEDULES:
            typer.echo(f"Error: --cron is required for unknown schedule {name}", err=True)
            raise typer.Exit(1)
        cron = DEFAULT_SCHEDULES[name].cron

    async def _set():
        async with AsyncSessionLocal() as db:
            _, previous = await upsert_schedule(
                db, name, schedule_id=schedule_id, cron=cron, destination=destination
            )
            return previous

    previous = asyncio.run(_set())
    typer.echo(f"{name}: {schedule_id} ({cron} → {destination})")
    if previous:
        typer.echo(f"  replaced {previous}; delete it from the scheduler.")


@schedules_app.command("list")
def list_cmd() -> None:
    """List recorded schedules."""

    async def _list():
        async with AsyncSessionLocal() as db:
            return await list_schedules(db)

    rows = asyncio.run(_list())
    if not rows:
        typer.echo("No schedules recorded.")
        return
    for row in rows:
        typer.echo(f"  {row.name:<16} {row.schedule_id:<28} {row.cron:<14} {row.destination}")


@schedules_app.command("remove")
def remove(name: str = typer.Argument(...)) -> None:
    """Forget the schedule recorded for NAME."""

    async def _remove():
        async with AsyncSessionLocal() as db:
            return await remove_schedule(db, name)

    schedule_id = asyncio.run(_remove())
    if schedule_id is None:
        typer.echo(f"No schedule recorded for {name}", err=True)
        raise typer.Exit(1)
    typer.echo(f"Removed {name} ({schedule_id})")


@schedules_app.command("defaults")
def defaults(base_url: str = typer.Option(..., "--base-url", help="Public API base URL.")) -> None:
    """Print the recommended cron registrations for this service."""
    for name, spec in DEFAULT_SCHEDULES.items():
        typer.echo(f"  {name:<16} {spec.cron:<14} {base_url.rstrip('/')}{spec.path}")
