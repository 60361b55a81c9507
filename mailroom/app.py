"""FastAPI application factory."""

from __future__ import annotations

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from mailroom.attachments import AttachmentStore
from mailroom.config import Settings
from mailroom.db.engine import Database
from mailroom.submission import ResendClient

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: database, attachment root, submission client. Shutdown: dispose."""
    settings: Settings = app.state.settings

    db = Database(settings.database_url)
    await db.create_all()
    app.state.db = db
    logger.info("database_engine_created")

    await app.state.attachments.start()

    submitter = ResendClient(settings.resend)
    await submitter.start()
    app.state.submitter = submitter

    yield

    await submitter.stop()
    await db.close()
    logger.info("shutdown_complete")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build and return the FastAPI application."""
    if settings is None:
        settings = Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="Mailroom",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    # One store per process: it owns the attachment root and its live sets
    app.state.attachments = AttachmentStore(settings.attachments)

    from mailroom.routers.attachments import router as attachments_router
    from mailroom.routers.emails import router as emails_router
    from mailroom.routers.newsletters import router as newsletters_router

    app.include_router(emails_router)
    app.include_router(newsletters_router)
    app.include_router(attachments_router, prefix=settings.attachments.url_prefix.rstrip("/"))

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "mailroom"}

    return app
