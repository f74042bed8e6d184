"""
Pytest configuration and fixtures for CatalogSync tests.

Provides:
- Async test database with SQLite (file-backed, one per test)
- Settings and job ledger services on that database
- A fake Scryfall HTTP backend built on httpx.MockTransport
- Factory fixtures for jobs and import services
"""

import asyncio
import inspect
import json
import uuid
from collections.abc import AsyncGenerator, AsyncIterator, Awaitable, Callable
from datetime import datetime
from typing import Any

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from catalog_sync.core.database import create_session_factory
from catalog_sync.core.tasks import BackgroundTasks
from catalog_sync.models import Base
from catalog_sync.models.job import Job, JobStatus, JobType
from catalog_sync.services.bulk_data import BulkDataService
from catalog_sync.services.jobs import JobService
from catalog_sync.services.set_data import SetDataService
from catalog_sync.services.settings import SettingsService

BULK_DATA_URL = "https://api.scryfall.com/bulk-data"
SETS_URL = "https://api.scryfall.com/sets"
ALL_CARDS_URL = "https://data.scryfall.io/all-cards/all-cards.json"


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Create async test database engine.

    File-backed so that concurrent sessions see each other's commits.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(db_engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session for direct assertions against the database."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def settings_service(session_factory) -> SettingsService:
    service = SettingsService(session_factory)
    await service.initialize_defaults()
    return service


@pytest_asyncio.fixture
async def job_service(session_factory) -> JobService:
    return JobService(session_factory)


@pytest_asyncio.fixture
async def background() -> AsyncGenerator[BackgroundTasks, None]:
    tasks = BackgroundTasks()
    yield tasks
    await tasks.shutdown()


# ============================================================================
# Fake Scryfall
# ============================================================================


Route = Callable[[httpx.Request], httpx.Response | Awaitable[httpx.Response]]


class FakeScryfall:
    """Serves canned responses by exact URL; anything else is a 404."""

    bulk_data_url = BULK_DATA_URL
    sets_url = SETS_URL
    all_cards_url = ALL_CARDS_URL

    def __init__(self) -> None:
        self.routes: dict[str, Route] = {}
        self.requests: list[httpx.Request] = []

    def add_json(self, url: str, payload: Any, status_code: int = 200) -> None:
        self.routes[url] = lambda request: httpx.Response(status_code, json=payload)

    def add_bytes(self, url: str, content: bytes, status_code: int = 200) -> None:
        self.routes[url] = lambda request: httpx.Response(status_code, content=content)

    def add_stream(self, url: str, chunks: Callable[[], AsyncIterator[bytes]]) -> None:
        self.routes[url] = lambda request: httpx.Response(200, content=chunks())

    def add_bulk_catalog(self, download_uri: str = ALL_CARDS_URL, dataset_type: str = "all_cards"):
        self.add_json(
            BULK_DATA_URL,
            {
                "object": "list",
                "has_more": False,
                "data": [
                    {
                        "object": "bulk_data",
                        "type": "oracle_cards",
                        "download_uri": "https://data.scryfall.io/oracle-cards/oracle-cards.json",
                    },
                    {
                        "object": "bulk_data",
                        "type": dataset_type,
                        "download_uri": download_uri,
                        "updated_at": "2026-10-18T09:04:51.155+00:00",
                    },
                ],
            },
        )

    def add_card_feed(self, records: list[Any], url: str = ALL_CARDS_URL) -> None:
        self.add_bytes(url, json.dumps(records).encode())

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(str(request.url))
        if route is None:
            return httpx.Response(404, json={"object": "error", "status": 404})
        response = route(request)
        if inspect.isawaitable(response):
            response = await response
        return response


@pytest.fixture
def fake_scryfall() -> FakeScryfall:
    return FakeScryfall()


@pytest_asyncio.fixture
async def http_client(fake_scryfall) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_scryfall.handler)) as client:
        yield client


def _card_record(index: int, **overrides: Any) -> dict[str, Any]:
    record = {
        "object": "card",
        "id": f"00000000-0000-0000-0000-{index:012d}",
        "oracle_id": f"11111111-0000-0000-0000-{index:012d}",
        "name": f"Test Card {index}",
        "set": "tst",
        "released_at": "2024-02-09",
        "prices": {"usd": "0.25"},
    }
    record.update(overrides)
    return record


def _set_record(code: str, **overrides: Any) -> dict[str, Any]:
    record = {
        "object": "set",
        "id": str(uuid.uuid5(uuid.NAMESPACE_URL, code)),
        "code": code,
        "name": f"Set {code.upper()}",
        "set_type": "expansion",
        "released_at": "2024-02-09",
        "card_count": 250,
        "digital": False,
        "icon_svg_uri": f"https://svgs.scryfall.io/sets/{code}.svg",
    }
    record.update(overrides)
    return record


# ============================================================================
# Factory Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def job_factory(session_factory):
    """Factory for creating jobs in any state."""

    async def _create_job(
        job_type: JobType = JobType.BULK_DATA_IMPORT,
        status: JobStatus = JobStatus.PENDING,
        created_at: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Job:
        job = Job(type=job_type, status=status, job_metadata=metadata or {})
        if created_at is not None:
            job.created_at = created_at
            job.updated_at = created_at
        async with session_factory() as db:
            db.add(job)
            await db.commit()
        return job

    return _create_job


@pytest_asyncio.fixture
async def bulk_data_factory(session_factory, job_service, settings_service, http_client, background):
    """Factory for card importers with overridable tunables."""

    def _create(**overrides: Any) -> BulkDataService:
        return BulkDataService(
            session_factory,
            job_service,
            settings_service,
            http_client,
            background,
            **overrides,
        )

    return _create


@pytest_asyncio.fixture
async def set_data_factory(
    session_factory, job_service, settings_service, http_client, background, tmp_path
):
    """Factory for set importers writing icons under tmp_path."""

    def _create(**overrides: Any) -> SetDataService:
        overrides.setdefault("data_dir", tmp_path / "data")
        return SetDataService(
            session_factory,
            job_service,
            settings_service,
            http_client,
            background,
            **overrides,
        )

    return _create


@pytest.fixture
def wait_for_terminal(job_service):
    """Poll until a job reaches a terminal status."""

    async def _wait(job_id: uuid.UUID, timeout: float = 5.0) -> Job:
        async with asyncio.timeout(timeout):
            while True:
                job = await job_service.get(job_id)
                if job is not None and job.status.is_terminal:
                    return job
                await asyncio.sleep(0.01)

    return _wait


@pytest.fixture
def card_record():
    """Factory for minimal but realistic ``all_cards`` records."""
    return _card_record


@pytest.fixture
def set_record():
    """Factory for set list records."""
    return _set_record
