"""FastAPI application for the Domain Tracker updater."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
import uvicorn

from domain_tracker.utils.logging import setup_logger
from domain_tracker.models.settings import Settings
from domain_tracker.services.state_manager import StateManager
from domain_tracker.api.routes import router

VERSION = "1.0.0"


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the application around an explicit settings object."""
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup/shutdown hooks.

        Startup:
        - Initialize logger
        - Create required directories (data/, data/backups/, logs/)
        - Reset progress state to idle

        Shutdown:
        - Log shutdown message
        """
        logger = setup_logger(
            "domain_tracker",
            str(settings.log_path),
            level=logging.getLevelName(settings.log_level),
        )
        logger.info(f"{settings.app_name} updater starting up...")

        for directory in (settings.data_dir, settings.backups_dir, settings.log_path.parent):
            directory.mkdir(parents=True, exist_ok=True)
            logger.debug(f"Ensured directory exists: {directory}")

        if not settings.app_key:
            logger.warning("APP_KEY is not configured; stored credentials cannot be decrypted")

        StateManager().reset()
        logger.info(f"Updater ready on {settings.host}:{settings.port}")

        yield

        logger.info("Updater shutting down...")

    app = FastAPI(
        title=f"{settings.app_name} Updater",
        description="Self-update and rollback service for Domain Tracker installations",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.include_router(router)

    @app.get("/")
    async def root():
        """Health check endpoint."""
        return {"status": "ok", "service": "domain-tracker-updater", "version": VERSION}

    return app


def main(settings: Optional[Settings] = None):
    """Main entry point for running the server."""
    settings = settings or Settings.from_env()
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        access_log=True,
    )


if __name__ == "__main__":
    main()
