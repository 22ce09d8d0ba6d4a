from contextlib import asynccontextmanager
import logging
from typing import Optional

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from celine.publishing.api.errors import register_error_handlers
from celine.publishing.api.routes.cron import router as cron_router
from celine.publishing.api.routes.jobs import router as jobs_router
from celine.publishing.api.routes.meta import router as meta_router
from celine.publishing.api.routes.published_posts import router as published_posts_router
from celine.publishing.api.routes.workers import router as workers_router
from celine.publishing.config.settings import Settings, settings as default_settings
from celine.publishing.db.session import AsyncSessionLocal
from celine.publishing.jobs.dispatcher import Dispatcher
from celine.publishing.jobs.registry import HandlerRegistry, build_registry
from celine.publishing.jobs.signal import Signal, build_signal
from celine.publishing.security.auth import AuthMiddleware

logger = logging.getLogger(__name__)


def create_app(
    *,
    settings: Optional[Settings] = None,
    sessions: Optional[async_sessionmaker[AsyncSession]] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    signal: Optional[Signal] = None,
    registry: Optional[HandlerRegistry] = None,
) -> FastAPI:
    """Build the API. Collaborators can be injected; the defaults come from settings."""

    load_dotenv()

    cfg = settings or default_settings
    session_factory = sessions or AsyncSessionLocal

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Open the outbound HTTP client and the accelerator; wire the dispatcher."""
        http = http_client or httpx.AsyncClient(timeout=cfg.HTTP_TIMEOUT_SECONDS)
        app.state.http = http
        app.state.signal = signal or build_signal(cfg)
        app.state.dispatcher = Dispatcher(
            session_factory, registry or build_registry(), http, cfg
        )
        try:
            yield
        finally:
            if http_client is None:
                await http.aclose()
            if signal is None:
                await app.state.signal.close()

    app = FastAPI(title="publishing-api", version="0.1.0", lifespan=lifespan)
    app.state.settings = cfg
    app.state.sessions = session_factory

    app.add_middleware(AuthMiddleware)
    register_error_handlers(app)

    app.include_router(meta_router)
    app.include_router(workers_router)
    app.include_router(cron_router)
    app.include_router(jobs_router)
    app.include_router(published_posts_router)

    return app


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
