"""Service container shared by the API process and the CLI."""

from dataclasses import dataclass

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from catalog_sync.config import get_config, get_settings
from catalog_sync.core.database import create_engine, create_session_factory
from catalog_sync.core.logging import get_logger
from catalog_sync.core.scheduler import Scheduler
from catalog_sync.core.tasks import BackgroundTasks
from catalog_sync.services.bulk_data import BulkDataService
from catalog_sync.services.jobs import JobService
from catalog_sync.services.set_data import SetDataService
from catalog_sync.services.settings import SettingsService

logger = get_logger(__name__)


@dataclass
class Services:
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    http_client: httpx.AsyncClient
    background: BackgroundTasks
    settings: SettingsService
    jobs: JobService
    bulk_data: BulkDataService
    set_data: SetDataService
    scheduler: Scheduler

    async def aclose(self) -> None:
        """Cancel background work, then release HTTP and database resources."""
        await self.background.shutdown()
        await self.http_client.aclose()
        await self.engine.dispose()


async def build_services(database_url: str | None = None) -> Services:
    """Wire every service and seed missing runtime settings."""
    app_settings = get_settings()

    engine = create_engine(database_url)
    session_factory = create_session_factory(engine)
    http_client = httpx.AsyncClient(
        timeout=app_settings.http_timeout_seconds,
        headers={"User-Agent": app_settings.user_agent, "Accept": "application/json"},
        follow_redirects=True,
    )
    background = BackgroundTasks()

    settings = SettingsService(session_factory, defaults=get_config().setting_defaults)
    await settings.initialize_defaults()

    jobs = JobService(session_factory)
    bulk_data = BulkDataService(session_factory, jobs, settings, http_client, background)
    set_data = SetDataService(
        session_factory, jobs, settings, http_client, background, data_dir=app_settings.data_dir
    )
    scheduler = Scheduler(
        settings,
        jobs,
        bulk_data,
        set_data,
        timezone=app_settings.scheduler_timezone,
    )

    logger.debug("services_built")
    return Services(
        engine=engine,
        session_factory=session_factory,
        http_client=http_client,
        background=background,
        settings=settings,
        jobs=jobs,
        bulk_data=bulk_data,
        set_data=set_data,
        scheduler=scheduler,
    )
