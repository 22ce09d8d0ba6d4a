from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.ext.asyncio.session import async_sessionmaker

from celine.publishing.config.settings import settings

engine = create_async_engine(settings.DATABASE_URL, pool_pre_ping=True)
AsyncSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


def get_sessions(request: Request) -> async_sessionmaker[AsyncSession]:
    """Session factory for this app (overridable through app.state for tests)."""
    return getattr(request.app.state, "sessions", None) or AsyncSessionLocal


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    async with get_sessions(request)() as session:
        yield session
