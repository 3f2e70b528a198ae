from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from relay import __version__
from relay.router import router as relay_router
from relay.settings import Settings, get_settings
from relay.utils.conversion_core import ConversionExecutor
from relay.utils.conversion_jobs import ConversionJobRunner
from relay.utils.download_registry import DownloadRegistry
from relay.utils.logging_config import get_logger
from relay.utils.retention import RetentionScheduler
from relay.utils.upload_storage import UploadStorage


# Set up logging
logger = get_logger()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the FastAPI application around the given (or environment) settings."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Create working directories and shared services, tear them down on exit."""
        settings.upload_dir.mkdir(parents=True, exist_ok=True)
        settings.output_dir.mkdir(parents=True, exist_ok=True)

        registry = DownloadRegistry()
        executor = ConversionExecutor(
            settings.output_dir,
            registry=registry,
            timeout=settings.conversion_timeout,
        )
        runner = ConversionJobRunner(executor, max_workers=settings.max_workers)

        app.state.settings = settings
        app.state.registry = registry
        app.state.upload_storage = UploadStorage(settings.upload_dir)
        app.state.job_runner = runner
        app.state.retention = None

        if settings.retention_enabled:
            retention = RetentionScheduler(
                settings.upload_dir,
                settings.output_dir,
                registry=registry,
                max_age_hours=settings.retention_max_age_hours,
                interval_hours=settings.retention_interval_hours,
            )
            retention.start()
            app.state.retention = retention

        logger.info(f"Upload directory: {settings.upload_dir}")
        logger.info(f"Converted directory: {settings.output_dir}")
        try:
            yield
        finally:
            if app.state.retention is not None:
                app.state.retention.shutdown()
            runner.shutdown()

    app = FastAPI(title="filerelay", version=__version__, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
        # Browsers only let scripts read the suggested download name when exposed
        expose_headers=["Content-Disposition"],
    )
    app.include_router(relay_router)

    @app.get("/ping")
    async def general_ping():
        return {"success": True, "data": "PONG!"}

    @app.get("/", response_class=PlainTextResponse)
    async def root():
        return "File Converter Backend is running!"

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=get_settings().port)
