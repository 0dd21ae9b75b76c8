"""Main entry point for the Reel Studio API."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from reelstudio import __version__
from reelstudio.api.deps import init_services, reset_services
from reelstudio.api.handlers import register_exception_handlers
from reelstudio.api.routes import health, jobs, studio, uploads
from reelstudio.config import settings
from reelstudio.db.session import create_session_factory
from reelstudio.jobs.notifier import JobNotifier
from reelstudio.jobs.orchestrator import JobOrchestrator, PollPolicy
from reelstudio.jobs.store import JobStore
from reelstudio.providers.registry import build_registry
from reelstudio.uploads import UploadStore

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Initialize resources on startup, clean up on shutdown."""
    configure_logging()
    settings.ensure_directories()

    store = JobStore(create_session_factory(settings.database_url))
    upload_store = UploadStore(settings.upload_dir, max_upload_mb=settings.max_upload_mb)
    registry = build_registry(settings, upload_store)
    orchestrator = JobOrchestrator(
        store,
        registry,
        policy=PollPolicy(
            interval=settings.poll_interval,
            max_attempts=settings.poll_max_attempts,
            max_consecutive_errors=settings.poll_max_consecutive_errors,
        ),
        artifact_dir=settings.artifact_dir,
        max_concurrent_polls=settings.max_concurrent_polls,
    )
    init_services(orchestrator, JobNotifier(store), registry, upload_store)
    await orchestrator.resume_unfinished()
    logger.info("Reel Studio %s started", __version__)

    yield

    await orchestrator.shutdown()
    reset_services()


def create_app(lifespan_context=lifespan) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Reel Studio",
        description="Asynchronous media jobs backed by external AI providers",
        version=__version__,
        lifespan=lifespan_context,
    )

    register_exception_handlers(app)

    # Include API routes
    app.include_router(health.router)
    app.include_router(jobs.router)
    app.include_router(studio.router)
    app.include_router(uploads.router)

    return app


app = create_app()


def main() -> None:
    """Run the application."""
    settings.ensure_directories()
    uvicorn.run(
        "reelstudio.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
