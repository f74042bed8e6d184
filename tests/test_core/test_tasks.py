"""Tests for the background task registry."""

import asyncio

import pytest

from catalog_sync.core.tasks import BackgroundTasks

pytestmark = pytest.mark.asyncio


class TestBackgroundTasks:
    """Tests for spawn and shutdown."""

    async def test_spawned_task_runs_and_is_released(self):
        """Should run the coroutine and forget the task once done."""
        tasks = BackgroundTasks()
        done = asyncio.Event()

        async def work():
            done.set()

        task = tasks.spawn(work(), name="work")
        await task

        assert done.is_set()
        assert len(tasks) == 0

    async def test_failed_task_does_not_propagate(self):
        """Should log a failing task without affecting the caller."""
        tasks = BackgroundTasks()

        async def boom():
            raise RuntimeError("boom")

        task = tasks.spawn(boom(), name="boom")
        with pytest.raises(RuntimeError):
            await task
        assert len(tasks) == 0

    async def test_shutdown_cancels_running_tasks(self):
        """Should cancel every live task and wait for it to finish."""
        tasks = BackgroundTasks()
        started = asyncio.Event()
        cleaned_up = asyncio.Event()

        async def forever():
            started.set()
            try:
                await asyncio.Event().wait()
            finally:
                cleaned_up.set()

        task = tasks.spawn(forever(), name="forever")
        await started.wait()

        await tasks.shutdown()

        assert task.cancelled()
        assert cleaned_up.is_set()
        assert tasks.closed is True

    async def test_spawn_after_shutdown_raises(self):
        """Should refuse new work once shut down."""
        tasks = BackgroundTasks()
        await tasks.shutdown()

        async def work():
            return None

        with pytest.raises(RuntimeError, match="shut down"):
            tasks.spawn(work(), name="late")
