"""
Cron scheduler - Enqueue recurring jobs on cron expressions.

Each trigger is an asyncio task that sleeps until its next fire time,
enqueues one job, and repeats. A failed enqueue is logged and the trigger
keeps its schedule.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from zoneinfo import ZoneInfo

from croniter import croniter

from .jobs import Job, JobService, JobType

logger = logging.getLogger(__name__)

DEFAULT_FEED_REFRESH = "*/30 * * * *"
DEFAULT_CACHE_CLEANUP = "0 2 * * *"


class CronTrigger:
    """A single recurring enqueue."""

    def __init__(
        self,
        name: str,
        expression: str,
        job_type: JobType,
        jobs: JobService,
        timezone: str = "UTC",
        payload: dict | None = None,
    ):
        if not croniter.is_valid(expression):
            raise ValueError(f"Invalid cron expression for {name}: {expression!r}")

        self.name = name
        self.expression = expression
        self.job_type = job_type
        self.jobs = jobs
        self.timezone = ZoneInfo(timezone)
        self.payload = payload or {}
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def next_fire_time(self, after: datetime | None = None) -> datetime:
        base = after or datetime.now(self.timezone)
        return croniter(self.expression, base.astimezone(self.timezone)).get_next(datetime)

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._loop(), name=f"cron-{self.name}")
        logger.info(
            f"Cron trigger started: {self.name}",
            extra={"trigger": self.name, "expression": self.expression, "next_run": self.next_fire_time().isoformat()},
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(f"Cron trigger stopped: {self.name}", extra={"trigger": self.name})

    async def fire(self) -> Job | None:
        """Enqueue this trigger's job. Returns None if the enqueue failed."""
        logger.info(f"Running {self.name} job", extra={"trigger": self.name})
        try:
            return await self.jobs.add_job(self.job_type, dict(self.payload))
        except Exception as e:
            logger.error(f"{self.name} job failed to enqueue: {e}", extra={"trigger": self.name, "error": str(e)})
            return None

    async def _loop(self) -> None:
        next_run = self.next_fire_time()
        while True:
            delay = (next_run - datetime.now(self.timezone)).total_seconds()
            await asyncio.sleep(max(0.0, delay))
            await self.fire()
            # Never fire the same slot twice if the sleep woke early
            next_run = self.next_fire_time(after=max(next_run, datetime.now(self.timezone)))


@dataclass
class CronJobs:
    feed_refresh: CronTrigger
    cache_cleanup: CronTrigger

    @property
    def triggers(self) -> list[CronTrigger]:
        return [self.feed_refresh, self.cache_cleanup]


def start_cron_jobs(
    jobs: JobService,
    feed_refresh: str = DEFAULT_FEED_REFRESH,
    cache_cleanup: str = DEFAULT_CACHE_CLEANUP,
    timezone: str = "UTC",
) -> CronJobs:
    """Start the feed refresh and cache cleanup triggers."""
    logger.info("Starting cron jobs...")

    cron_jobs = CronJobs(
        feed_refresh=CronTrigger("feed-refresh", feed_refresh, JobType.REFRESH, jobs, timezone),
        cache_cleanup=CronTrigger("cache-cleanup", cache_cleanup, JobType.CLEANUP, jobs, timezone),
    )
    for trigger in cron_jobs.triggers:
        trigger.start()

    logger.info("Cron jobs started successfully")
    return cron_jobs


async def stop_cron_jobs(cron_jobs: CronJobs) -> None:
    for trigger in cron_jobs.triggers:
        await trigger.stop()
