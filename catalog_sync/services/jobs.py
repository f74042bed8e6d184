"""Job ledger: durable lifecycle bookkeeping for background runs.

Status only moves forward (pending -> in_progress -> completed | failed |
cancelled). Every transition is a conditional UPDATE on the allowed source
states, so a terminal job is never rewritten even when two writers race.
"""

import uuid
from collections.abc import Collection
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_sync.core.database import session_scope
from catalog_sync.core.datetime_utils import get_cutoff, utc_now
from catalog_sync.core.logging import get_logger
from catalog_sync.models.job import ACTIVE_STATUSES, Job, JobStatus, JobType

logger = get_logger(__name__)

STALE_JOB_ERROR = "Job cancelled on startup (stale from previous run)"


class JobService:
    """Create, transition and query ``Job`` records."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(
        self,
        job_type: JobType,
        metadata: dict[str, Any] | None = None,
        trigger: str = "manual",
    ) -> Job:
        """Create a pending job."""
        job = Job(
            type=job_type,
            status=JobStatus.PENDING,
            job_metadata=metadata or {},
            trigger=trigger,
        )
        async with session_scope(self._session_factory) as db:
            db.add(job)

        logger.bind(job_id=str(job.id), type=job_type.value, trigger=trigger).info("job_created")
        return job

    async def get(self, job_id: uuid.UUID) -> Job | None:
        async with self._session_factory() as db:
            return await db.get(Job, job_id)

    async def list(
        self,
        page: int = 1,
        page_size: int = 20,
        job_type: JobType | None = None,
        status: JobStatus | None = None,
    ) -> tuple[list[Job], int]:
        """List jobs newest first.

        Returns:
            (jobs on the requested page, total matching jobs)
        """
        page = max(page, 1)
        page_size = max(page_size, 1)

        filters = []
        if job_type is not None:
            filters.append(Job.type == job_type)
        if status is not None:
            filters.append(Job.status == status)

        async with self._session_factory() as db:
            total_result = await db.execute(select(func.count(Job.id)).where(*filters))
            total = total_result.scalar() or 0

            result = await db.execute(
                select(Job)
                .where(*filters)
                .order_by(Job.created_at.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            jobs = list(result.scalars().all())

        return jobs, total

    async def get_last_by_type(self, job_type: JobType) -> Job | None:
        """Most recent job of ``job_type``, if any."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(Job).where(Job.type == job_type).order_by(Job.created_at.desc()).limit(1)
            )
            return result.scalar_one_or_none()

    async def start(self, job_id: uuid.UUID) -> bool:
        """Mark a pending job as in progress."""
        return await self._transition(
            job_id,
            JobStatus.IN_PROGRESS,
            {JobStatus.PENDING},
            started_at=utc_now(),
        )

    async def complete(self, job_id: uuid.UUID) -> bool:
        """Mark a running job as completed; a pending job must be started first."""
        return await self._transition(
            job_id,
            JobStatus.COMPLETED,
            {JobStatus.IN_PROGRESS},
            completed_at=utc_now(),
        )

    async def fail(self, job_id: uuid.UUID, message: str) -> bool:
        return await self._transition(
            job_id,
            JobStatus.FAILED,
            ACTIVE_STATUSES,
            completed_at=utc_now(),
            error=message,
        )

    async def cancel(self, job_id: uuid.UUID, message: str) -> bool:
        return await self._transition(
            job_id,
            JobStatus.CANCELLED,
            ACTIVE_STATUSES,
            completed_at=utc_now(),
            error=message,
        )

    async def update_metadata(self, job_id: uuid.UUID, metadata: dict[str, Any]) -> None:
        """Replace a job's progress metadata (last write wins)."""
        async with session_scope(self._session_factory) as db:
            await db.execute(
                update(Job)
                .where(Job.id == job_id)
                .values(job_metadata=metadata, updated_at=utc_now())
            )

    async def cleanup_older_than(self, retention_days: int) -> int:
        """Delete jobs created more than ``retention_days`` ago.

        Returns:
            Number of deleted jobs
        """
        cutoff = get_cutoff(days=retention_days)
        async with session_scope(self._session_factory) as db:
            result = await db.execute(delete(Job).where(Job.created_at < cutoff))

        deleted = result.rowcount or 0
        logger.bind(retention_days=retention_days, deleted=deleted).info("jobs_cleaned_up")
        return deleted

    async def cancel_stale_jobs(self) -> int:
        """Cancel jobs left pending/in_progress by a previous process.

        Called once on startup, before anything can create new jobs.

        Returns:
            Number of cancelled jobs
        """
        now = utc_now()
        async with session_scope(self._session_factory) as db:
            result = await db.execute(
                update(Job)
                .where(Job.status.in_(list(ACTIVE_STATUSES)))
                .values(
                    status=JobStatus.CANCELLED,
                    completed_at=now,
                    error=STALE_JOB_ERROR,
                    updated_at=now,
                )
            )

        cancelled = result.rowcount or 0
        if cancelled:
            logger.bind(cancelled=cancelled).warning("stale_jobs_cancelled")
        return cancelled

    async def _transition(
        self,
        job_id: uuid.UUID,
        target: JobStatus,
        allowed_from: Collection[JobStatus],
        **values: Any,
    ) -> bool:
        async with session_scope(self._session_factory) as db:
            result = await db.execute(
                update(Job)
                .where(Job.id == job_id, Job.status.in_(list(allowed_from)))
                .values(status=target, updated_at=utc_now(), **values)
            )

        if not result.rowcount:
            # Absent id, or the job already moved past ``allowed_from``
            logger.bind(job_id=str(job_id), target=target.value).warning(
                "job_transition_skipped"
            )
            return False
        return True
