"""
FastAPI application for the issue tracker.

Run with:
    uvicorn tracker.api.app:app --reload
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tracker import __version__
from tracker.api.routes import router as workflow_router
from tracker.auth.routes import router as auth_router
from tracker.config import Settings, get_settings
from tracker.engine import create_engine
from tracker.integrations.email import EmailService
from tracker.integrations.sentry import init_sentry
from tracker.storage import StorageProvider, create_storage

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(
    settings: Settings | None = None,
    storage: StorageProvider | None = None,
    email: EmailService | None = None,
) -> FastAPI:
    """
    Build the app.

    Tests pass their own storage and email service; production leaves both
    to be built from settings at startup.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialize and cleanup app resources."""
        configure_logging(settings)
        init_sentry(settings)

        app.state.engine = create_engine(settings, storage or create_storage(settings), email)
        logger.info(f"Tracker API starting in {settings.environment} mode")

        yield

        cache = app.state.engine.storage.cache
        if hasattr(cache, "close"):
            await cache.close()
        logger.info("Tracker API shutting down")

    app = FastAPI(
        title="Tracker API",
        description="Multi-tenant issue tracking: projects, tickets, membership and role workflows",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth_router)
    app.include_router(workflow_router)

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "version": __version__}

    return app


app = create_app()
