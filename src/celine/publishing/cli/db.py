from __future__ import annotations

import asyncio

import typer

from celine.publishing.db import init_db

db_app = typer.Typer(add_completion=False, help="Database bootstrap")


@db_app.command("init")
def init() -> None:
    """Create the database if missing and run migrations to head."""
    asyncio.run(init_db.main())


@db_app.command("upgrade")
def upgrade() -> None:
    """Run `alembic upgrade head` against DATABASE_URL."""
    init_db.run_migrations()
