"""
Tests for cron triggers.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from feed_pipeline.jobs import JobService, JobType
from feed_pipeline.scheduler import CronTrigger, start_cron_jobs, stop_cron_jobs


class TestCronTrigger:

    def test_rejects_invalid_expression(self):
        with pytest.raises(ValueError, match="Invalid cron expression"):
            CronTrigger("bad", "every minute", JobType.REFRESH, JobService())

    def test_next_fire_time_every_30_minutes(self):
        trigger = CronTrigger("feed-refresh", "*/30 * * * *", JobType.REFRESH, JobService())
        after = datetime(2025, 1, 6, 10, 5, tzinfo=timezone.utc)

        assert trigger.next_fire_time(after) == datetime(2025, 1, 6, 10, 30, tzinfo=timezone.utc)

    def test_next_fire_time_daily(self):
        trigger = CronTrigger("cache-cleanup", "0 2 * * *", JobType.CLEANUP, JobService())
        after = datetime(2025, 1, 6, 3, 0, tzinfo=timezone.utc)

        assert trigger.next_fire_time(after) == datetime(2025, 1, 7, 2, 0, tzinfo=timezone.utc)

    def test_next_fire_time_respects_timezone(self):
        trigger = CronTrigger("cleanup", "0 2 * * *", JobType.CLEANUP, JobService(), timezone="America/New_York")
        after = datetime(2025, 1, 6, 12, 0, tzinfo=timezone.utc)

        fire = trigger.next_fire_time(after)

        assert fire.astimezone(timezone.utc) == datetime(2025, 1, 7, 7, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_fire_enqueues_job(self):
        jobs = JobService()
        trigger = CronTrigger("feed-refresh", "*/30 * * * *", JobType.REFRESH, jobs)

        job = await trigger.fire()

        assert job.type == JobType.REFRESH
        assert jobs.get_queue_stats("feed-refresh")["waiting"] == 1
        await jobs.close()

    @pytest.mark.asyncio
    async def test_fire_swallows_enqueue_failure(self):
        jobs = AsyncMock()
        jobs.add_job.side_effect = RuntimeError("queue closed")
        trigger = CronTrigger("feed-refresh", "*/30 * * * *", JobType.REFRESH, jobs)

        assert await trigger.fire() is None

    @pytest.mark.asyncio
    async def test_loop_fires_and_keeps_running_after_failure(self):
        jobs = AsyncMock()
        calls = []

        async def add_job(job_type, payload):
            calls.append(job_type)
            if len(calls) == 1:
                raise RuntimeError("transient")

        jobs.add_job.side_effect = add_job
        trigger = CronTrigger("feed-refresh", "*/30 * * * *", JobType.REFRESH, jobs)
        trigger.next_fire_time = lambda after=None: datetime.now(timezone.utc) + timedelta(milliseconds=10)

        trigger.start()
        assert trigger.is_running
        for _ in range(100):
            if jobs.add_job.await_count >= 2:
                break
            await asyncio.sleep(0.01)
        await trigger.stop()

        assert jobs.add_job.await_count >= 2
        assert not trigger.is_running


class TestCronJobs:

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        jobs = JobService()
        cron = start_cron_jobs(jobs)

        assert cron.feed_refresh.expression == "*/30 * * * *"
        assert cron.cache_cleanup.expression == "0 2 * * *"
        assert cron.cache_cleanup.job_type == JobType.CLEANUP
        assert all(t.is_running for t in cron.triggers)

        await stop_cron_jobs(cron)

        assert not any(t.is_running for t in cron.triggers)
        await jobs.close()
