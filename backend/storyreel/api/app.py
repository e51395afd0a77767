"""FastAPI application setup with lifespan and exception handlers."""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from storyreel import __version__, validate_dependencies
from storyreel.api.routes import router
from storyreel.config import settings
from storyreel.db import init_database, shutdown
from storyreel.errors import StoryReelError
from storyreel.services.file_manager import get_file_manager
from storyreel.services.providers import close_providers

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager.

    Startup:
        - Probe system dependencies (ffmpeg)
        - Initialize database schema

    Shutdown:
        - Close provider HTTP clients
        - Close database connections
    """
    logger.info("Starting StoryReel API...")
    validate_dependencies()
    await init_database()
    logger.info("API startup complete")

    yield

    logger.info("Shutting down StoryReel API...")
    await close_providers()
    await shutdown()
    logger.info("API shutdown complete")


def create_app(*, serve_media: bool = True, use_lifespan: bool = True) -> FastAPI:
    """Build the application.

    Tests pass ``use_lifespan=False`` and override the session dependency
    so nothing touches the configured database.
    """
    application = FastAPI(
        title="StoryReel API",
        version=__version__,
        lifespan=lifespan if use_lifespan else None,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)

    @application.exception_handler(StoryReelError)
    async def storyreel_exception_handler(request: Request, exc: StoryReelError):
        """Translate domain errors into their HTTP status."""
        if exc.http_status >= 500:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.http_status, content={"detail": exc.message})

    @application.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Catch-all exception handler to prevent stack traces in API responses."""
        logger.error(
            "Unhandled exception in %s %s: %s: %s",
            request.method, request.url.path, type(exc).__name__, exc,
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "detail": str(exc)},
        )

    if serve_media:
        # Generated artifacts are served under storage.public_base_url
        media = get_file_manager()
        mount_path = settings.storage.public_base_url
        if mount_path.startswith("/"):
            application.mount(
                mount_path.rstrip("/"),
                StaticFiles(directory=str(media.base_dir)),
                name="media",
            )

    return application


app = create_app()
