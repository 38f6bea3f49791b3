"""
Scriptoria - Main FastAPI Application

Watches storage for scanned PDFs and turns them into notes:
- Discovery from local folders or Google Drive push notifications
- OCR, cleanup and formatting through an ordered stage pipeline
- One admission per document, tracked in the record store
"""

import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from app.api import health
from app.api.webhook import build_webhook_router
from app.runtime import Runtime, build_runtime
from app.utils.config import ConfigurationError, get_settings, load_pipeline_config

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def configure_logging(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    """Configure loguru sinks: stdout always, a rotating file when requested."""
    logger.remove()
    logger.add(sys.stdout, format=LOG_FORMAT, level=level.upper())
    if log_file:
        logger.add(str(log_file), format=LOG_FORMAT, level=level.upper(), rotation="10 MB", retention=5)


def create_app(runtime: Runtime) -> FastAPI:
    """Create the HTTP app serving ``runtime``."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        logger.info(f"Starting {runtime.settings.api_title} v{runtime.settings.api_version}")
        runtime.start()

        yield

        logger.info("Shutting down application...")
        runtime.stop()
        logger.success("Application shut down complete")

    app = FastAPI(
        title=runtime.settings.api_title,
        version=runtime.settings.api_version,
        description="Scanned document OCR and note pipeline",
        lifespan=lifespan,
    )
    app.state.runtime = runtime

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler."""
        logger.error(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": str(exc) if runtime.settings.log_level == "DEBUG" else "An error occurred",
            },
        )

    app.include_router(health.router, tags=["Health"])
    if runtime.webhook_path:
        app.include_router(build_webhook_router(runtime.webhook_path), tags=["Notifications"])
        logger.info(f"Accepting Drive notifications on {runtime.webhook_path}")

    return app


def main() -> int:
    """Process entry point. Returns the exit code."""
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_file_location)

    try:
        config = load_pipeline_config(settings.config_file_location, settings)
        runtime = build_runtime(settings, config)
    except ConfigurationError as e:
        logger.error(f"Startup failed: {e}")
        return 1

    app = create_app(runtime)
    server = uvicorn.Server(
        uvicorn.Config(app, host="0.0.0.0", port=settings.port, log_level=settings.log_level.lower())
    )

    def stop_server(cause):
        if cause is not None:
            logger.error(f"Pipeline cancelled: {cause}")
            server.should_exit = True

    runtime.pipeline.scope.on_cancel(stop_server)
    server.run()

    if runtime.pipeline.error is not None:
        logger.error(f"Exiting after pipeline failure: {runtime.pipeline.error}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
