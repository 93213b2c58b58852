"""FastAPI application entry point."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from govdata import __version__
from govdata.api.routers import health, sources
from govdata.config.settings import settings
from govdata.ingestion.manager import DataSourceManager

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(
    manager: DataSourceManager | None = None,
    start_sync: bool | None = None,
) -> FastAPI:
    """Build the API around one manager.

    Args:
        manager: Engine to expose; a fresh one is created when omitted
        start_sync: Run the refresh scheduler (defaults to settings)
    """
    engine = manager or DataSourceManager()
    run_scheduler = settings.sync_enabled if start_sync is None else start_sync

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Starting govdata API...")
        app.state.manager = engine

        if run_scheduler:
            await engine.start()
            logger.info(
                f"Refresh scheduler running for {len(engine.get_data_sources())} sources"
            )

        yield

        logger.info("Shutting down govdata API...")
        await engine.aclose()
        logger.info("govdata API shut down")

    app = FastAPI(
        title="govdata API",
        description="Cached, rate-limited access to government data providers",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.manager = engine

    app.include_router(health.router, tags=["Health"])
    app.include_router(sources.router, prefix="/api/v1/sources", tags=["Sources"])

    return app
