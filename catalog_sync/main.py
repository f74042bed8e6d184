from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from catalog_sync.config import get_settings
from catalog_sync.core.logging import get_logger, setup_logging
from catalog_sync.dependencies import build_services

logger = get_logger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    # Startup
    setup_logging()
    services = await build_services()
    app.state.services = services

    await services.jobs.cancel_stale_jobs()

    for importer in (services.bulk_data, services.set_data):
        try:
            await importer.trigger_initial_import()
        except Exception as e:
            logger.bind(dataset=importer.settings_prefix, error=str(e)).error(
                "initial_import_trigger_failed"
            )

    if settings.scheduler_enabled:
        await services.scheduler.start()
    else:
        logger.info("scheduler_disabled_by_config")

    yield

    # Shutdown
    await services.scheduler.stop()
    await services.aclose()


app = FastAPI(
    title="CatalogSync",
    description="Keeps the local card and set catalogs in sync with Scryfall",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/api/docs" if settings.debug else None,
    redoc_url="/api/redoc" if settings.debug else None,
)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint for load balancers."""
    return {"status": "healthy"}
