"""Local bootstrap: make sure the database exists, then migrate it to head.

Production deployments run `alembic upgrade head` as their own release step;
this module backs `publishing-cli db init` for development machines.
"""

import asyncio
import logging
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import make_url, text
from sqlalchemy.ext.asyncio import create_async_engine

from celine.publishing.config.settings import settings

logger = logging.getLogger(__name__)

# <root>/src/celine/publishing/db/init_db.py
PROJECT_ROOT = Path(__file__).resolve().parents[4]


def alembic_config(root: Path = PROJECT_ROOT) -> Config:
    ini = root / "alembic.ini"
    if not ini.exists():
        raise FileNotFoundError(f"No alembic.ini under {root}; run from a source checkout")
    cfg = Config(str(ini))
    cfg.set_main_option("script_location", str(root / "alembic"))
    return cfg


async def ensure_database(db_url: str) -> bool:
    """Create the Postgres database named in `db_url`. Returns True if it was created."""
    url = make_url(db_url)
    if url.get_backend_name() != "postgresql":
        return False

    maintenance = create_async_engine(
        url.set(database="postgres").render_as_string(hide_password=False),
        isolation_level="AUTOCOMMIT",
    )
    try:
        async with maintenance.connect() as conn:
            exists = await conn.scalar(
                text("SELECT 1 FROM pg_database WHERE datname = :name"),
                {"name": url.database},
            )
            if exists:
                logger.info("Database %s present", url.database)
                return False
            await conn.execute(text(f'CREATE DATABASE "{url.database}"'))
            logger.info("Database %s created", url.database)
            return True
    finally:
        await maintenance.dispose()


def run_migrations() -> None:
    logger.info("Upgrading schema to head")
    command.upgrade(alembic_config(), "head")
    logger.info("Schema up to date")


async def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    await ensure_database(settings.DATABASE_URL)
    # env.py starts its own event loop
    await asyncio.to_thread(run_migrations)
    print("Database ready.")


if __name__ == "__main__":
    asyncio.run(main())
