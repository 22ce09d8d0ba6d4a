from __future__ import annotations

import typer
from celine.publishing.cli.db import db_app
from celine.publishing.cli.jobs import jobs_app
from celine.publishing.cli.keys import keys_app
from celine.publishing.cli.schedules import schedules_app
from celine.publishing.cli.worker import worker_app


def build_cli() -> typer.Typer:
    app = typer.Typer(add_completion=True, help="CELINE publishing CLI")
    app.add_typer(worker_app, name="worker")
    app.add_typer(jobs_app, name="jobs")
    app.add_typer(schedules_app, name="schedules")
    app.add_typer(keys_app, name="keys")
    app.add_typer(db_app, name="db")
    return app


def create_app():
    app = build_cli()
    app()


if __name__ == "__main__":
    create_app()
