"""Registry of detached background tasks.

One ``BackgroundTasks`` instance is created at process start and shared by the
import services. Every import that outlives the call that started it is
spawned here, so ``shutdown()`` reaches all of them: in-flight downloads are
cancelled instead of running past process exit.
"""

import asyncio
from collections.abc import Coroutine
from typing import Any

from catalog_sync.core.logging import get_logger

logger = get_logger(__name__)


class BackgroundTasks:
    """Spawn, track and cancel detached asyncio tasks."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task[Any]:
        """Start ``coro`` as a task that outlives the caller.

        Raises:
            RuntimeError: after ``shutdown()``
        """
        if self._closed:
            coro.close()
            raise RuntimeError(f"cannot spawn {name!r}: background tasks are shut down")

        task = asyncio.create_task(coro, name=name)
        # The event loop keeps only weak references to tasks
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.bind(task=task.get_name()).debug("background_task_cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.opt(exception=exc).bind(task=task.get_name(), error=str(exc)).error(
                "background_task_failed"
            )

    async def shutdown(self) -> None:
        """Cancel every live task and wait until all of them have finished."""
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.bind(cancelled=len(tasks)).info("background_tasks_shutdown")
