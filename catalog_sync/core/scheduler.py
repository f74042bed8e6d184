"""
APScheduler-driven scheduler for periodic catalog maintenance.

Tasks:
- bulk_data_update: card catalog refresh, daily at ``bulk_data_update_time``
- set_data_update: set catalog refresh, every 14 days at ``set_data_update_time``
- job_cleanup: deletes old job records, daily at 00:00

APScheduler fires a check every ``scheduler_check_interval_minutes`` and a
one-shot catch-up pass ``scheduler_catchup_delay_seconds`` after start. Each
check decides per task whether it runs: it must be enabled, the current time
must be inside its 5-minute time-of-day window, and its interval must have
elapsed since the last run. The last run is tracked in memory and persisted
in the settings table, so a restart does not re-run a task early. The
catch-up pass ignores the time window, so a window missed while the process
was down is made up once the interval has truly elapsed.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from apscheduler import AsyncScheduler, ConflictPolicy
from apscheduler.datastores.memory import MemoryDataStore
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from catalog_sync.core.datetime_utils import (
    is_in_time_window,
    is_time_literal,
    local_now,
    parse_time_of_day,
    to_aware_utc,
    utc_now,
)
from catalog_sync.core.errors import SettingNotFoundError, SettingValueError
from catalog_sync.core.logging import get_logger
from catalog_sync.services.bulk_data import BulkDataService
from catalog_sync.services.importer import StreamingImporter
from catalog_sync.services.jobs import JobService
from catalog_sync.services.set_data import SetDataService
from catalog_sync.services.settings import SettingsService

logger = get_logger(__name__)

DEFAULT_CHECK_INTERVAL_MINUTES = 5
DEFAULT_CATCHUP_DELAY_SECONDS = 60
DEFAULT_JOB_CLEANUP_RETENTION_DAYS = 30
TIME_WINDOW_MINUTES = 5

CHECK_SCHEDULE_ID = "scheduler_check"
CATCHUP_SCHEDULE_ID = "scheduler_catchup"


@dataclass(frozen=True)
class ScheduledTask:
    """A named recurring unit of work.

    ``time_of_day`` is a literal ``HH:MM`` or the settings key holding one
    (resolved on every check); empty means no window. An empty
    ``enabled_setting_key`` means always enabled.
    """

    name: str
    interval: timedelta
    run: Callable[[], Awaitable[None]]
    time_of_day: str = ""
    enabled_setting_key: str = ""
    last_run_setting_key: str = ""


class Scheduler:
    """Decides which tasks are due and runs at most one instance of each."""

    def __init__(
        self,
        settings: SettingsService,
        jobs: JobService,
        bulk_data: BulkDataService,
        set_data: SetDataService,
        *,
        timezone: str = "UTC",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._settings = settings
        self._jobs = jobs
        self._bulk_data = bulk_data
        self._set_data = set_data
        self._clock = clock or (lambda: local_now(timezone))

        self._last_run: dict[str, datetime] = {}
        self._last_run_lock = asyncio.Lock()
        self._running: set[str] = set()
        self._aps: AsyncScheduler | None = None

        self.tasks: list[ScheduledTask] = [
            ScheduledTask(
                name="bulk_data_update",
                interval=timedelta(hours=24),
                run=self.run_bulk_data_update,
                time_of_day="bulk_data_update_time",
                enabled_setting_key="bulk_data_auto_update",
                last_run_setting_key="bulk_data_last_update",
            ),
            ScheduledTask(
                name="set_data_update",
                interval=timedelta(days=14),
                run=self.run_set_data_update,
                time_of_day="set_data_update_time",
                enabled_setting_key="set_data_auto_update",
                last_run_setting_key="set_data_last_update",
            ),
            ScheduledTask(
                name="job_cleanup",
                interval=timedelta(hours=24),
                run=self.run_job_cleanup,
                time_of_day="00:00",
                last_run_setting_key="job_cleanup_last_run",
            ),
        ]

    @property
    def running(self) -> bool:
        return self._aps is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Register the periodic check and the catch-up pass, then check once."""
        if self.running:
            logger.warning("scheduler_already_running")
            return

        minutes = await self._settings.get_int(
            "scheduler_check_interval_minutes", DEFAULT_CHECK_INTERVAL_MINUTES
        )
        if minutes <= 0:
            minutes = DEFAULT_CHECK_INTERVAL_MINUTES

        # Memory store: eligibility state lives in the settings table, not in schedules
        aps = AsyncScheduler(data_store=MemoryDataStore())
        # APScheduler 4.x must be entered before schedules can be added
        await aps.__aenter__()
        self._aps = aps

        # First tick one interval from now; start() checks inline below
        interval = timedelta(minutes=minutes)
        await aps.add_schedule(
            scheduled_check,
            IntervalTrigger(minutes=minutes, start_time=datetime.now(UTC) + interval),
            id=CHECK_SCHEDULE_ID,
            args=[self],
            conflict_policy=ConflictPolicy.replace,
        )

        if await self._settings.get_bool("scheduler_catchup_enabled", True):
            delay = await self._settings.get_int(
                "scheduler_catchup_delay_seconds", DEFAULT_CATCHUP_DELAY_SECONDS
            )
            await aps.add_schedule(
                scheduled_catchup,
                DateTrigger(datetime.now(UTC) + timedelta(seconds=max(delay, 0))),
                id=CATCHUP_SCHEDULE_ID,
                args=[self],
                conflict_policy=ConflictPolicy.replace,
            )
            logger.bind(delay_seconds=delay).info("scheduler_catchup_scheduled")
        else:
            logger.info("scheduler_catchup_disabled")

        await aps.start_in_background()

        logger.bind(
            check_interval_minutes=minutes,
            tasks=[task.name for task in self.tasks],
        ).info("scheduler_started")

        await self.check_and_run_tasks()

    async def stop(self) -> None:
        """Shut APScheduler down, waiting for a check that is in flight."""
        if self._aps is None:
            return

        aps, self._aps = self._aps, None
        await aps.__aexit__(None, None, None)
        logger.info("scheduler_stopped")

    async def get_schedules(self) -> list[dict[str, Any]]:
        """Registered APScheduler schedules, for diagnostics."""
        if self._aps is None:
            return []

        schedules = await self._aps.get_schedules()
        return [
            {
                "id": s.id,
                "trigger": str(s.trigger),
                "next_fire_time": s.next_fire_time.isoformat() if s.next_fire_time else None,
            }
            for s in schedules
        ]

    async def check_and_run_tasks(self) -> None:
        """Evaluate every task with the time window enforced."""
        for task in self.tasks:
            await self.check_task(task)

    async def run_catchup(self) -> None:
        """Run overdue tasks regardless of their time window."""
        logger.info("scheduler_catchup_started")
        for task in self.tasks:
            await self.check_task(task, catchup=True)

    # ------------------------------------------------------------------
    # Eligibility
    # ------------------------------------------------------------------

    async def check_task(self, task: ScheduledTask, catchup: bool = False) -> bool:
        """Run ``task`` if it is due.

        A call made while the same task is already running returns
        immediately; it is not queued.

        Returns:
            True if the task body was invoked
        """
        # Test-and-set with no await in between
        if task.name in self._running:
            logger.bind(task=task.name).debug("scheduled_task_already_running")
            return False
        self._running.add(task.name)

        try:
            if task.enabled_setting_key and not await self._settings.get_bool(
                task.enabled_setting_key, False
            ):
                return False

            now = self._clock()
            if not catchup and not await self.is_in_time_window(task.time_of_day, now):
                return False

            async with self._last_run_lock:
                if not await self._is_due(task, now):
                    return False
                # Recorded before the body runs so the next tick sees it
                self._last_run[task.name] = now

            logger.bind(task=task.name, interval=str(task.interval), catchup=catchup).info(
                "scheduled_task_running"
            )
            try:
                await task.run()
            except Exception as e:
                logger.bind(task=task.name, error=str(e)).exception("scheduled_task_failed")
            return True
        finally:
            self._running.discard(task.name)

    async def is_in_time_window(self, time_of_day: str, now: datetime) -> bool:
        """True if ``now`` is within 5 minutes after the task's time of day.

        Args:
            time_of_day: Literal ``HH:MM`` or a settings key holding one
            now: Current time in the scheduler's timezone
        """
        if not time_of_day:
            return True

        if is_time_literal(time_of_day):
            value = time_of_day
        else:
            try:
                value = await self._settings.get(time_of_day)
            except SettingNotFoundError as e:
                logger.bind(setting=time_of_day, error=str(e)).warning("time_setting_unavailable")
                return False

        try:
            target = parse_time_of_day(value)
        except ValueError as e:
            logger.bind(setting=time_of_day, error=str(e)).warning("time_setting_invalid")
            return False

        return is_in_time_window(target, now, TIME_WINDOW_MINUTES)

    async def should_run_task(self, task: ScheduledTask, now: datetime) -> bool:
        """True if ``task.interval`` has elapsed since its last known run."""
        async with self._last_run_lock:
            return await self._is_due(task, now)

    async def _is_due(self, task: ScheduledTask, now: datetime) -> bool:
        # Caller holds _last_run_lock
        now = to_aware_utc(now)

        last_run = self._last_run.get(task.name)
        if last_run is not None:
            return now - to_aware_utc(last_run) >= task.interval

        if not task.last_run_setting_key:
            return True

        try:
            persisted = await self._settings.get_time(task.last_run_setting_key)
        except SettingValueError as e:
            logger.bind(task=task.name, error=str(e)).warning("last_run_setting_invalid")
            return True

        if persisted is not None and now - persisted < task.interval:
            self._last_run[task.name] = persisted
            return False
        return True

    # ------------------------------------------------------------------
    # Task bodies
    # ------------------------------------------------------------------

    async def run_bulk_data_update(self) -> None:
        """Start a card catalog import without waiting for it."""
        await self._start_import(self._bulk_data, "bulk_data")

    async def run_set_data_update(self) -> None:
        """Start a set catalog import without waiting for it."""
        await self._start_import(self._set_data, "set_data")

    @staticmethod
    async def _start_import(importer: StreamingImporter, dataset: str) -> None:
        log = logger.bind(dataset=dataset)
        try:
            job = await importer.start_background_import(trigger="scheduled")
        except Exception as e:
            log.bind(error=str(e)).error("scheduled_import_job_create_failed")
            return
        log.bind(job_id=str(job.id)).info("scheduled_import_started")

    async def run_job_cleanup(self) -> None:
        """Delete job records older than ``job_cleanup_retention_days``."""
        retention_days = await self._settings.get_int(
            "job_cleanup_retention_days", DEFAULT_JOB_CLEANUP_RETENTION_DAYS
        )
        try:
            deleted = await self._jobs.cleanup_older_than(retention_days)
        except Exception as e:
            logger.bind(error=str(e)).error("job_cleanup_failed")
            return

        try:
            await self._settings.set_time("job_cleanup_last_run", utc_now())
        except Exception as e:
            logger.bind(error=str(e)).warning("job_cleanup_last_run_persist_failed")

        logger.bind(deleted=deleted, retention_days=retention_days).info("job_cleanup_completed")


async def scheduled_check(scheduler: Scheduler) -> None:
    """APScheduler entry point for the periodic check."""
    await scheduler.check_and_run_tasks()


async def scheduled_catchup(scheduler: Scheduler) -> None:
    """APScheduler entry point for the one-shot catch-up pass."""
    await scheduler.run_catchup()
