"""Durable record of external cron registrations, keyed by logical job name.

The external scheduler (QStash, Kubernetes CronJob, ...) owns the actual
timers; this table remembers which schedule id belongs to which job so it
can be replaced or removed later from any process.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from celine.publishing.db.models import ScheduleRegistration, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CronSpec:
    cron: str
    path: str


DEFAULT_SCHEDULES: dict[str, CronSpec] = {
    "workers": CronSpec(cron="* * * * *", path="/workers"),
    "social-publish": CronSpec(cron="*/5 * * * *", path="/cron/social-publish"),
    "social-metrics": CronSpec(cron="0 */6 * * *", path="/cron/social-metrics"),
    "social-refresh": CronSpec(cron="0 3 * * *", path="/cron/social-refresh"),
}


async def get_schedule(db: AsyncSession, name: str) -> ScheduleRegistration | None:
    return await db.get(ScheduleRegistration, name)


async def upsert_schedule(
    db: AsyncSession,
    name: str,
    *,
    schedule_id: str,
    cron: str,
    destination: str,
) -> tuple[ScheduleRegistration, str | None]:
    """Store the registration. Returns it plus the schedule id it replaced, if any."""
    row = await get_schedule(db, name)
    previous: str | None = None
    if row is None:
        row = ScheduleRegistration(
            name=name, schedule_id=schedule_id, cron=cron, destination=destination
        )
        db.add(row)
    else:
        if row.schedule_id != schedule_id:
            previous = row.schedule_id
        row.schedule_id = schedule_id
        row.cron = cron
        row.destination = destination
        row.updated_at = utc_now()
    await db.commit()
    logger.info("Schedule %s -> %s (%s %s)", name, schedule_id, cron, destination)
    return row, previous


async def list_schedules(db: AsyncSession) -> list[ScheduleRegistration]:
    result = await db.execute(select(ScheduleRegistration).order_by(ScheduleRegistration.name))
    return list(result.scalars().all())


async def remove_schedule(db: AsyncSession, name: str) -> str | None:
    """Delete the registration; return the schedule id that was stored."""
    row = await get_schedule(db, name)
    if row is None:
        return None
    schedule_id = row.schedule_id
    await db.execute(delete(ScheduleRegistration).where(ScheduleRegistration.name == name))
    await db.commit()
    logger.info("Removed schedule %s (%s)", name, schedule_id)
    return schedule_id
