"""
Service container: builds every pipeline component from Config and owns
their startup/shutdown order. Routes reach it through request.app.state.
"""

import logging
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Request

from .cache import CacheBackend, MemoryCache, create_cache
from .config import Config, config
from .database import Database
from .feeds import FeedFetcher
from .jobs import JobService
from .providers import get_provider_from_env
from .rate_limit import RateLimitConfig, RateLimiter
from .scheduler import CronJobs, start_cron_jobs, stop_cron_jobs
from .summarizer import LLMSummaryCapability, MockSummaryCapability, SummarizeOptions, Summarizer
from .tasks import TaskRunner

logger = logging.getLogger(__name__)


@dataclass
class Services:
    db: Database
    cache: CacheBackend
    rate_limiter: RateLimiter
    fetcher: FeedFetcher
    summarizer: Summarizer
    jobs: JobService
    tasks: TaskRunner
    api_rate_limit: RateLimitConfig
    capability_name: str = "mock"
    resolve_feed_dns: bool = True
    cron_schedule: tuple[str, str, str] | None = None  # (refresh, cleanup, timezone)
    cron: CronJobs | None = None
    started: bool = False

    async def start(self) -> None:
        """Start workers, the cache sweeper and (if scheduled) cron triggers."""
        if self.started:
            return

        if isinstance(self.cache, MemoryCache):
            self.cache.start_sweeper()

        self.tasks.register()

        if self.cron_schedule:
            refresh, cleanup, timezone = self.cron_schedule
            self.cron = start_cron_jobs(self.jobs, refresh, cleanup, timezone)

        self.started = True
        logger.info("Pipeline services started", extra={"summarizer": self.capability_name})

    async def close(self) -> None:
        """Stop cron, drain and close the job service, then release the cache."""
        if self.cron:
            await stop_cron_jobs(self.cron)
            self.cron = None

        await self.jobs.close()
        await self.cache.close()
        self.started = False
        logger.info("Pipeline services stopped")


def build_services(cfg: Config = config) -> Services:
    """Wire the pipeline from configuration."""
    db = Database(cfg.DB_PATH)
    cache = create_cache(cfg.REDIS_URL or None)
    rate_limiter = RateLimiter(cache)

    fetcher = FeedFetcher(
        user_agent=cfg.FEED_USER_AGENT,
        timeout=cfg.FEED_TIMEOUT,
        max_retries=cfg.FEED_MAX_RETRIES,
        retry_delay=cfg.FEED_RETRY_DELAY,
    )

    provider = get_provider_from_env(
        anthropic_key=cfg.ANTHROPIC_API_KEY or None,
        openai_key=cfg.OPENAI_API_KEY or None,
        preferred_provider=cfg.LLM_PROVIDER or None,
        default_model=cfg.LLM_MODEL or None,
    )
    if provider:
        capability = LLMSummaryCapability(provider)
        capability_name = provider.name
        logger.info(f"LLM provider initialized: {provider.name}")
    else:
        capability = MockSummaryCapability()
        capability_name = "mock"
        logger.warning(
            "No LLM API key configured. Set ANTHROPIC_API_KEY or OPENAI_API_KEY. "
            "Using the offline mock summarizer."
        )

    summarizer = Summarizer(
        capability=capability,
        cache=cache,
        rate_limiter=rate_limiter,
        cache_ttl=cfg.SUMMARY_CACHE_TTL,
        rate_limit=RateLimitConfig(
            max_requests=cfg.SUMMARIZER_RATE_LIMIT,
            window_ms=cfg.SUMMARIZER_RATE_WINDOW_MS,
            key_prefix="ratelimit:summarizer",
        ),
        batch_size=cfg.SUMMARY_BATCH_SIZE,
        batch_delay=cfg.SUMMARY_BATCH_DELAY,
        options=SummarizeOptions(max_tokens=cfg.LLM_MAX_TOKENS, temperature=cfg.LLM_TEMPERATURE),
    )

    jobs = JobService(concurrency=cfg.JOB_CONCURRENCY)
    tasks = TaskRunner(
        db=db,
        cache=cache,
        fetcher=fetcher,
        summarizer=summarizer,
        jobs=jobs,
        feed_cache_ttl=cfg.FEED_CACHE_TTL,
        auto_summarize=cfg.AUTO_SUMMARIZE,
    )

    return Services(
        db=db,
        cache=cache,
        rate_limiter=rate_limiter,
        fetcher=fetcher,
        summarizer=summarizer,
        jobs=jobs,
        tasks=tasks,
        api_rate_limit=RateLimitConfig(
            max_requests=cfg.RATE_LIMIT_MAX,
            window_ms=cfg.RATE_LIMIT_WINDOW_MS,
            key_prefix="ratelimit:api",
        ),
        capability_name=capability_name,
        cron_schedule=(cfg.CRON_FEED_REFRESH, cfg.CRON_CACHE_CLEANUP, cfg.CRON_TIMEZONE),
    )


# ─────────────────────────────────────────────────────────────
# FastAPI dependencies
# ─────────────────────────────────────────────────────────────

def get_services(request: Request) -> Services:
    return request.app.state.services


def get_db(services: Annotated[Services, Depends(get_services)]) -> Database:
    return services.db


def get_jobs(services: Annotated[Services, Depends(get_services)]) -> JobService:
    return services.jobs
