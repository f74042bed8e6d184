"""Streaming import engine.

Applies a remote, arbitrarily large JSON-array feed to a local catalog table:

1. resolve the download URI from a small catalog-of-datasets response,
2. stream the feed and decode it one element at a time,
3. convert each element (bad records are counted and sampled, not fatal),
4. upsert each batch on the natural id and publish progress to the job,
5. decide the verdict from the failure rate once the stream is exhausted.

Batches are committed as they go. A run that is cancelled or ends over the
failure threshold leaves the committed prefix in place; re-running is safe
because the upsert is idempotent and rows missing from the feed are never
pruned.
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any

import httpx
from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_sync.config import get_config, get_settings
from catalog_sync.core.database import insert_for, session_scope
from catalog_sync.core.datetime_utils import utc_now
from catalog_sync.core.errors import (
    DatasetNotFoundError,
    DownloadError,
    FailureThresholdExceededError,
    ImportFailedError,
    SettingNotFoundError,
)
from catalog_sync.core.logging import get_logger
from catalog_sync.core.tasks import BackgroundTasks
from catalog_sync.models.base import Base
from catalog_sync.models.job import Job, JobType
from catalog_sync.schemas.scryfall import BulkDataListResponse
from catalog_sync.services.jobs import JobService
from catalog_sync.services.settings import SettingsService
from catalog_sync.services.streaming import iter_json_array

logger = get_logger(__name__)

CANCELLED_MESSAGE = "import cancelled"


def truncate_message(message: str, max_length: int) -> str:
    """Shorten ``message`` to ``max_length`` characters, marking the cut."""
    if len(message) <= max_length:
        return message
    return message[: max_length - 3] + "..."


def describe_error(exc: Exception) -> str:
    """One-line description of a conversion error."""
    if isinstance(exc, ValidationError):
        return "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'record'}: {err['msg']}"
            for err in exc.errors()
        )
    return str(exc) or type(exc).__name__


@dataclass
class ImportBatchResult:
    """Outcome of converting one batch; folded into the run's progress."""

    rows: list[dict[str, Any]] = field(default_factory=list)
    success: int = 0
    failed: int = 0
    failure_examples: list[str] = field(default_factory=list)
    counters: dict[str, int] = field(default_factory=dict)

    def record_failure(self, message: str, max_examples: int, max_length: int) -> None:
        self.failed += 1
        if len(self.failure_examples) < max_examples:
            self.failure_examples.append(truncate_message(message, max_length))

    def count(self, name: str) -> None:
        self.counters[name] = self.counters.get(name, 0) + 1


@dataclass
class ImportProgress:
    """Cumulative progress of one run, published as job metadata."""

    label: str
    max_examples: int
    phase: str = "pending"
    processed: int = 0
    failed: int = 0
    failure_examples: list[str] = field(default_factory=list)
    counters: dict[str, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return self.processed + self.failed

    @property
    def failure_rate(self) -> float:
        return self.failed / self.total if self.total else 0.0

    def add(self, batch: ImportBatchResult) -> None:
        self.processed += batch.success
        self.failed += batch.failed
        room = self.max_examples - len(self.failure_examples)
        if room > 0:
            self.failure_examples.extend(batch.failure_examples[:room])
        for name, value in batch.counters.items():
            self.counters[name] = self.counters.get(name, 0) + value

    def to_metadata(self, include_total: bool = False) -> dict[str, Any]:
        total = self.total if include_total else 0
        metadata: dict[str, Any] = {
            "phase": self.phase,
            "total_records": total,
            "processed_records": self.processed,
            "failed_records": self.failed,
            f"total_{self.label}": total,
            f"processed_{self.label}": self.processed,
            f"failed_{self.label}": self.failed,
            "failure_examples": list(self.failure_examples),
        }
        metadata.update(self.counters)
        return metadata


class StreamingImporter(ABC):
    """Base class for a dataset synced through the streaming engine.

    Subclasses declare the dataset (job type, settings prefix, catalog type
    marker, target table) and implement ``convert``; ``enrich`` is an
    optional per-record side effect.
    """

    job_type: JobType
    settings_prefix: str  # bulk_data -> bulk_data_url, bulk_data_last_update, ...
    dataset_type: str | None = None  # catalog entry to download
    array_path: str = ""  # ijson prefix of the record array
    label: str = "records"  # metadata key suffix: processed_cards, ...
    counter_names: tuple[str, ...] = ()  # extra metadata counters, reported from zero
    model: type[Base]
    conflict_column: str = "scryfall_id"
    update_columns: tuple[str, ...] = ()

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        jobs: JobService,
        settings: SettingsService,
        http_client: httpx.AsyncClient,
        background: BackgroundTasks,
        *,
        batch_size: int | None = None,
        max_failure_rate: float | None = None,
        max_failure_examples: int | None = None,
        failure_message_length: int | None = None,
        download_timeout: float | None = None,
    ) -> None:
        config = get_config().imports
        self._session_factory = session_factory
        self._jobs = jobs
        self._settings = settings
        self._http = http_client
        self._background = background
        self.batch_size = batch_size or config.batch_size
        self.max_failure_rate = (
            config.max_failure_rate if max_failure_rate is None else max_failure_rate
        )
        self.max_failure_examples = max_failure_examples or config.max_failure_examples
        self.failure_message_length = failure_message_length or config.failure_message_length
        self.download_timeout = download_timeout or get_settings().download_timeout_seconds

    # ------------------------------------------------------------------
    # Dataset hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def convert(self, raw: Any) -> dict[str, Any]:
        """Convert a feed element into a table row; raise to reject it."""

    def describe(self, raw: Any) -> str:
        """Short identification of a feed element for failure examples."""
        if isinstance(raw, dict):
            return f"Record {raw.get('id', '?')}"
        return f"Record {str(raw)[:40]}"

    async def enrich(self, row: dict[str, Any], result: ImportBatchResult) -> None:
        """Per-record side effect run after conversion. May raise."""
        return None

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def create_import_job(self, trigger: str = "manual") -> Job:
        """Create a pending job for this dataset."""
        return await self._jobs.create(self.job_type, {}, trigger=trigger)

    async def count_rows(self) -> int:
        async with self._session_factory() as db:
            result = await db.execute(select(func.count()).select_from(self.model))
            return result.scalar() or 0

    async def has_data(self) -> bool:
        """True if the catalog table holds at least one row."""
        return await self.count_rows() > 0

    async def start_background_import(self, trigger: str = "manual") -> Job:
        """Create a job and run the import as a detached background task."""
        job = await self.create_import_job(trigger=trigger)
        self._background.spawn(
            self._run_detached(job.id),
            name=f"{self.settings_prefix}_import:{job.id}",
        )
        return job

    async def trigger_initial_import(self) -> Job | None:
        """Start one background import if the catalog is empty.

        Returns:
            The created job, or None if the catalog already has rows
        """
        if await self.has_data():
            logger.bind(dataset=self.settings_prefix).info("initial_import_skipped_data_exists")
            return None

        logger.bind(dataset=self.settings_prefix).info("initial_import_triggered")
        return await self.start_background_import(trigger="initial")

    async def download_and_import(self, job_id: uuid.UUID) -> None:
        """Run the import for ``job_id`` and record the outcome.

        The job ends ``completed`` or ``failed`` (cancellation included) and
        ``{prefix}_last_update`` / ``{prefix}_last_update_status`` are
        persisted either way.

        Raises:
            ImportFailedError: on any failure of the run
            asyncio.CancelledError: if the run was cancelled
        """
        if not await self._jobs.start(job_id):
            raise ImportFailedError(f"job {job_id} is not pending")

        log = logger.bind(job_id=str(job_id), dataset=self.settings_prefix)

        # From here on the job is in_progress: every await is covered
        try:
            await self._set_status("in_progress")
            log.info("import_started")
            try:
                await self._run(job_id)
            except Exception as e:
                log.bind(error=str(e)).error("import_failed")
                await self._record_outcome(job_id, str(e))
                if isinstance(e, ImportFailedError):
                    raise
                raise ImportFailedError(f"{self.settings_prefix} import failed: {e}") from e

            await self._record_outcome(job_id, None)
        except asyncio.CancelledError:
            log.warning("import_cancelled")
            # A second cancellation must not leave the job in_progress
            await asyncio.shield(self._record_outcome(job_id, CANCELLED_MESSAGE))
            raise

        log.info("import_completed")

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def _run(self, job_id: uuid.UUID) -> None:
        progress = ImportProgress(
            label=self.label,
            max_examples=self.max_failure_examples,
            counters=dict.fromkeys(self.counter_names, 0),
        )

        progress.phase = "fetching_list"
        await self._publish(job_id, progress)
        download_uri = await self.resolve_download_uri()

        progress.phase = "downloading_and_importing"
        await self._publish(job_id, progress)

        batch: list[Any] = []
        async with aclosing(self._stream_records(download_uri)) as records:
            async for raw in records:
                batch.append(raw)
                if len(batch) >= self.batch_size:
                    await self._apply_batch(job_id, batch, progress)
                    batch = []

        if batch:
            await self._apply_batch(job_id, batch, progress)

        progress.phase = "completed"
        await self._publish(job_id, progress, include_total=True)

        if progress.failure_rate > self.max_failure_rate:
            raise FailureThresholdExceededError(
                progress.failed, progress.total, self.max_failure_rate
            )

        if progress.failed:
            logger.bind(
                dataset=self.settings_prefix,
                failed=progress.failed,
                total=progress.total,
                failure_rate_pct=round(progress.failure_rate * 100, 2),
            ).warning("import_completed_with_failures")

    async def resolve_download_uri(self) -> str:
        """Look up the download URI of ``dataset_type`` in the dataset catalog."""
        catalog_url = await self._catalog_url()
        try:
            response = await self._http.get(catalog_url)
        except httpx.HTTPError as e:
            raise DownloadError(f"failed to fetch {self.settings_prefix} list: {e}") from e

        if not response.is_success:
            raise DownloadError(
                f"{self.settings_prefix} list returned status {response.status_code}",
                status_code=response.status_code,
            )

        try:
            catalog = BulkDataListResponse.model_validate_json(response.content)
        except ValidationError as e:
            raise DownloadError(f"failed to decode {self.settings_prefix} list: {e}") from e

        for entry in catalog.data:
            if entry.type == self.dataset_type:
                return entry.download_uri

        raise DatasetNotFoundError(f"{self.dataset_type} bulk data not found")

    async def _catalog_url(self) -> str:
        key = f"{self.settings_prefix}_url"
        try:
            url = (await self._settings.get(key)).strip()
        except SettingNotFoundError as e:
            raise ImportFailedError(f"failed to get {key} setting: {e}") from e
        if not url:
            raise ImportFailedError(f"setting {key} is empty")
        return url

    async def _stream_records(self, uri: str) -> AsyncIterator[Any]:
        try:
            async with self._http.stream("GET", uri, timeout=self.download_timeout) as response:
                if not response.is_success:
                    raise DownloadError(
                        f"{self.settings_prefix} download returned status {response.status_code}",
                        status_code=response.status_code,
                    )
                async for record in iter_json_array(response.aiter_bytes(), path=self.array_path):
                    yield record
        except httpx.HTTPError as e:
            raise DownloadError(f"failed to download {self.settings_prefix}: {e}") from e

    async def _apply_batch(
        self,
        job_id: uuid.UUID,
        records: list[Any],
        progress: ImportProgress,
    ) -> None:
        result = await self._convert_batch(records)

        if result.rows:
            async with session_scope(self._session_factory) as db:
                await self.upsert(db, result.rows)

        progress.add(result)
        await self._publish(job_id, progress)
        logger.bind(
            dataset=self.settings_prefix,
            processed=progress.processed,
            failed=progress.failed,
        ).info("import_progress")

    async def _convert_batch(self, records: list[Any]) -> ImportBatchResult:
        result = ImportBatchResult()
        for raw in records:
            try:
                row = self.convert(raw)
            except Exception as e:
                message = f"{self.describe(raw)}: {describe_error(e)}"
                result.record_failure(
                    message, self.max_failure_examples, self.failure_message_length
                )
                logger.bind(dataset=self.settings_prefix, error=message).warning(
                    "record_conversion_failed"
                )
                continue

            result.rows.append(row)
            try:
                await self.enrich(row, result)
            except Exception as e:
                # Row is kept, the record counts as failed
                message = f"{self.describe(raw)}: {describe_error(e)}"
                result.record_failure(
                    message, self.max_failure_examples, self.failure_message_length
                )
                logger.bind(dataset=self.settings_prefix, error=message).warning(
                    "record_enrichment_failed"
                )
                continue

            result.success += 1
        return result

    async def upsert(self, db: AsyncSession, rows: list[dict[str, Any]]) -> None:
        """Insert new rows, update feed-sourced columns of existing ones."""
        # Postgres rejects a statement that touches the same key twice
        unique_rows = list({row[self.conflict_column]: row for row in rows}.values())

        table = self.model.__table__
        stmt = insert_for(db, table)
        stmt = stmt.on_conflict_do_update(
            index_elements=[self.conflict_column],
            set_={column: stmt.excluded[column] for column in self.update_columns},
        )
        await db.execute(stmt, unique_rows)

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    async def _publish(
        self,
        job_id: uuid.UUID,
        progress: ImportProgress,
        include_total: bool = False,
    ) -> None:
        try:
            await self._jobs.update_metadata(job_id, progress.to_metadata(include_total))
        except Exception as e:
            logger.bind(job_id=str(job_id), error=str(e)).warning("job_metadata_update_failed")

    async def _record_outcome(self, job_id: uuid.UUID, error: str | None) -> None:
        if error is None:
            moved = await self._jobs.complete(job_id)
            status = "success"
        else:
            try:
                moved = await self._jobs.fail(job_id, error)
            except Exception as e:
                logger.bind(job_id=str(job_id), error=str(e)).error("job_fail_update_failed")
                moved = True
            status = "failed"

        if not moved:
            # Another path already finished the job and wrote the outcome
            return

        await self._set_status(status)
        try:
            await self._settings.set_time(f"{self.settings_prefix}_last_update", utc_now())
        except Exception as e:
            logger.bind(error=str(e)).warning("last_update_setting_failed")

    async def _set_status(self, status: str) -> None:
        key = f"{self.settings_prefix}_last_update_status"
        try:
            await self._settings.set(key, status)
        except Exception as e:
            logger.bind(key=key, error=str(e)).warning("status_setting_failed")

    async def _run_detached(self, job_id: uuid.UUID) -> None:
        try:
            await self.download_and_import(job_id)
        except ImportFailedError as e:
            logger.bind(job_id=str(job_id), error=str(e)).error("background_import_failed")
