"""Tests for the job ledger."""

import uuid
from datetime import timedelta

import pytest

from catalog_sync.core.datetime_utils import utc_now
from catalog_sync.models.job import JobStatus, JobType
from catalog_sync.services.jobs import STALE_JOB_ERROR

pytestmark = pytest.mark.asyncio


class TestLifecycle:
    """Tests for create/start/complete/fail/cancel."""

    async def test_create_is_pending(self, job_service):
        """Should create a pending job with empty metadata."""
        job = await job_service.create(JobType.BULK_DATA_IMPORT, trigger="scheduled")

        stored = await job_service.get(job.id)
        assert stored.status == JobStatus.PENDING
        assert stored.type == JobType.BULK_DATA_IMPORT
        assert stored.trigger == "scheduled"
        assert stored.job_metadata == {}
        assert stored.started_at is None

    async def test_start_then_complete(self, job_service):
        """Should stamp started_at and completed_at."""
        job = await job_service.create(JobType.SET_DATA_IMPORT)

        assert await job_service.start(job.id) is True
        started = await job_service.get(job.id)
        assert started.status == JobStatus.IN_PROGRESS
        assert started.started_at is not None

        assert await job_service.complete(job.id) is True
        completed = await job_service.get(job.id)
        assert completed.status == JobStatus.COMPLETED
        assert completed.completed_at is not None
        assert completed.error is None

    async def test_fail_records_error(self, job_service):
        """Should store the failure message and completion time."""
        job = await job_service.create(JobType.BULK_DATA_IMPORT)
        await job_service.start(job.id)

        assert await job_service.fail(job.id, "bulk_data download returned status 503") is True

        failed = await job_service.get(job.id)
        assert failed.status == JobStatus.FAILED
        assert failed.error == "bulk_data download returned status 503"
        assert failed.completed_at is not None

    async def test_unknown_id_is_a_no_op(self, job_service):
        """Should return False instead of raising for an absent job."""
        missing = uuid.uuid4()

        assert await job_service.start(missing) is False
        assert await job_service.complete(missing) is False
        assert await job_service.get(missing) is None

    @pytest.mark.parametrize(
        "terminal", [JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED]
    )
    async def test_terminal_status_never_changes(self, job_service, job_factory, terminal):
        """Should refuse every transition out of a terminal status."""
        job = await job_factory(status=terminal)

        assert await job_service.start(job.id) is False
        assert await job_service.complete(job.id) is False
        assert await job_service.fail(job.id, "late failure") is False
        assert await job_service.cancel(job.id, "late cancel") is False

        stored = await job_service.get(job.id)
        assert stored.status == terminal
        assert stored.error is None

    async def test_start_requires_pending(self, job_service, job_factory):
        """Should not restart a job that is already in progress."""
        job = await job_factory(status=JobStatus.IN_PROGRESS)

        assert await job_service.start(job.id) is False

    async def test_complete_requires_in_progress(self, job_service):
        """Should not complete a job that was never started."""
        job = await job_service.create(JobType.BULK_DATA_IMPORT)

        assert await job_service.complete(job.id) is False

        stored = await job_service.get(job.id)
        assert stored.status == JobStatus.PENDING
        assert stored.completed_at is None

    async def test_pending_job_can_fail(self, job_service):
        """Should allow a pending job to fail directly."""
        job = await job_service.create(JobType.SET_DATA_IMPORT)

        assert await job_service.fail(job.id, "set_data list returned status 500") is True
        assert (await job_service.get(job.id)).status == JobStatus.FAILED

    async def test_update_metadata_replaces(self, job_service):
        """Should replace metadata wholesale, last write wins."""
        job = await job_service.create(JobType.BULK_DATA_IMPORT, {"phase": "pending"})

        await job_service.update_metadata(job.id, {"phase": "fetching_list"})
        await job_service.update_metadata(job.id, {"phase": "completed", "processed_records": 3})

        stored = await job_service.get(job.id)
        assert stored.job_metadata == {"phase": "completed", "processed_records": 3}


class TestCancelStaleJobs:
    """Tests for cancel_stale_jobs."""

    async def test_cancels_only_active_jobs(self, job_service, job_factory):
        """Should cancel pending and in-progress jobs and leave finished ones alone."""
        pending = await job_factory(status=JobStatus.PENDING)
        running = await job_factory(status=JobStatus.IN_PROGRESS)
        completed = await job_factory(status=JobStatus.COMPLETED)

        cancelled = await job_service.cancel_stale_jobs()

        assert cancelled == 2
        for job_id in (pending.id, running.id):
            job = await job_service.get(job_id)
            assert job.status == JobStatus.CANCELLED
            assert job.error == STALE_JOB_ERROR
            assert job.completed_at is not None

        untouched = await job_service.get(completed.id)
        assert untouched.status == JobStatus.COMPLETED
        assert untouched.error is None

    async def test_nothing_to_cancel(self, job_service, job_factory):
        """Should return zero when no job is active."""
        await job_factory(status=JobStatus.FAILED)

        assert await job_service.cancel_stale_jobs() == 0


class TestQueries:
    """Tests for list, get_last_by_type and cleanup_older_than."""

    async def test_list_newest_first_with_total(self, job_service, job_factory):
        """Should order by creation time descending and report the full total."""
        now = utc_now()
        oldest = await job_factory(created_at=now - timedelta(hours=3))
        middle = await job_factory(created_at=now - timedelta(hours=2))
        newest = await job_factory(created_at=now - timedelta(hours=1))

        first_page, total = await job_service.list(page=1, page_size=2)
        second_page, _ = await job_service.list(page=2, page_size=2)

        assert total == 3
        assert [job.id for job in first_page] == [newest.id, middle.id]
        assert [job.id for job in second_page] == [oldest.id]

    async def test_list_filters(self, job_service, job_factory):
        """Should filter by type and status."""
        await job_factory(job_type=JobType.BULK_DATA_IMPORT, status=JobStatus.COMPLETED)
        failed_sets = await job_factory(job_type=JobType.SET_DATA_IMPORT, status=JobStatus.FAILED)
        await job_factory(job_type=JobType.SET_DATA_IMPORT, status=JobStatus.COMPLETED)

        jobs, total = await job_service.list(
            job_type=JobType.SET_DATA_IMPORT, status=JobStatus.FAILED
        )

        assert total == 1
        assert jobs[0].id == failed_sets.id

    async def test_get_last_by_type(self, job_service, job_factory):
        """Should return the most recent job of the type, or None."""
        now = utc_now()
        await job_factory(created_at=now - timedelta(days=2))
        latest = await job_factory(created_at=now - timedelta(days=1))

        found = await job_service.get_last_by_type(JobType.BULK_DATA_IMPORT)

        assert found.id == latest.id
        assert await job_service.get_last_by_type(JobType.SET_DATA_IMPORT) is None

    async def test_cleanup_older_than(self, job_service, job_factory):
        """Should delete jobs created before the retention cutoff."""
        now = utc_now()
        old = await job_factory(status=JobStatus.COMPLETED, created_at=now - timedelta(days=31))
        recent = await job_factory(status=JobStatus.COMPLETED, created_at=now - timedelta(days=29))

        deleted = await job_service.cleanup_older_than(30)

        assert deleted == 1
        assert await job_service.get(old.id) is None
        assert await job_service.get(recent.id) is not None
