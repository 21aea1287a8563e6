"""
Background job processors for feed ingestion, refresh, summarization and cleanup.

Every dependency is passed to TaskRunner explicitly; processors only touch
shared state through the cache, the database and the job service.
"""

import asyncio
import json
import logging
import time

from .cache import CacheBackend
from .database import Database
from .feeds import FeedFetcher, ParsedFeed
from .jobs import QUEUE_FOR_JOB, Job, JobService, JobType, Processor
from .sanitize import extract_plain_text
from .summarizer import ArticleInput, Summarizer

logger = logging.getLogger(__name__)


class TaskRunner:
    """Processors for the pipeline's job queues."""

    def __init__(
        self,
        db: Database,
        cache: CacheBackend,
        fetcher: FeedFetcher,
        summarizer: Summarizer,
        jobs: JobService,
        feed_cache_ttl: int = 1800,
        auto_summarize: bool = False,
    ):
        self.db = db
        self.cache = cache
        self.fetcher = fetcher
        self.summarizer = summarizer
        self.jobs = jobs
        self.feed_cache_ttl = feed_cache_ttl
        self.auto_summarize = auto_summarize
        self._in_flight: dict[tuple[str, bool], asyncio.Task] = {}
        # Caps concurrent refresh fetches across all refresh jobs
        self._refresh_slots = asyncio.Semaphore(max(1, jobs.concurrency))

    def processors(self) -> dict[str, Processor]:
        """Queue name -> processor. The email queue is served by an external sender."""
        return {
            QUEUE_FOR_JOB[JobType.INGEST]: self.ingest,
            QUEUE_FOR_JOB[JobType.REFRESH]: self.refresh,
            QUEUE_FOR_JOB[JobType.SUMMARIZE]: self.summarize,
            QUEUE_FOR_JOB[JobType.CLEANUP]: self.cleanup,
        }

    def register(self, concurrency: int | None = None) -> None:
        """Start one worker per processing queue."""
        for queue_name, processor in self.processors().items():
            self.jobs.start_worker(queue_name, processor, concurrency)

    # ─────────────────────────────────────────────────────────────
    # Feed loading
    # ─────────────────────────────────────────────────────────────

    async def load_feed(self, url: str, fresh: bool = False) -> ParsedFeed:
        """
        Cache-aside feed load.

        Concurrent callers for the same URL share one cache lookup and at most
        one fetch. With fresh=True the cache is not read: the feed is always
        fetched and the new document replaces the cached one. A plain load
        may join an in-flight fresh load, never the other way round.
        """
        task = self._in_flight.get((url, True))
        if task is None and not fresh:
            task = self._in_flight.get((url, False))
        if task is None:
            key = (url, fresh)
            task = asyncio.create_task(self._load(url, fresh))
            self._in_flight[key] = task
            task.add_done_callback(lambda t: self._forget(key, t))
        return await asyncio.shield(task)

    def _forget(self, key: tuple[str, bool], task: asyncio.Task) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]

    async def _load(self, url: str, fresh: bool) -> ParsedFeed:
        key = f"feed:{url}"

        raw = None
        if not fresh:
            try:
                raw = await self.cache.get(key)
            except Exception as e:
                logger.warning(f"Feed cache read failed: {e}", extra={"url": url, "error": str(e)})

        if raw:
            logger.info("Using cached feed data", extra={"url": url})
            return ParsedFeed.from_dict(json.loads(raw))

        feed = await self.fetcher.ingest(url)

        try:
            await self.cache.set(key, json.dumps(feed.to_dict()), self.feed_cache_ttl)
        except Exception as e:
            logger.warning(f"Feed cache write failed: {e}", extra={"url": url, "error": str(e)})

        return feed

    # ─────────────────────────────────────────────────────────────
    # Processors
    # ─────────────────────────────────────────────────────────────

    async def ingest(self, job: Job) -> dict:
        """Store a new feed and its items. Already-known feeds are not an error."""
        url = job.payload["url"]
        started = time.monotonic()

        existing = self.db.get_feed_by_url(url)
        if existing:
            logger.info(f"Feed already exists: {url}", extra={"url": url, "feed_id": existing.id})
            return {"status": "exists", "feed_id": existing.id}

        parsed = await self.load_feed(url)
        feed = self.db.create_feed(parsed.meta, user_id=job.payload.get("user_id"))
        new_ids = self.db.create_many_articles(feed.id, parsed.items)

        if self.auto_summarize:
            await self._queue_summaries(new_ids)

        logger.info(
            "Feed ingested successfully",
            extra={
                "feed_id": feed.id,
                "url": url,
                "items_ingested": len(parsed.items),
                "new_articles": len(new_ids),
                "processing_time_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return {
            "status": "created",
            "feed_id": feed.id,
            "title": feed.title,
            "items_ingested": len(parsed.items),
            "new_articles": len(new_ids),
        }

    async def refresh(self, job: Job) -> dict:
        """Refresh every stored feed, or just payload["feed_id"]. One bad feed never stops the rest."""
        feed_id = job.payload.get("feed_id")
        if feed_id is not None:
            feed = self.db.get_feed(feed_id)
            feeds = [feed] if feed else []
        else:
            feeds = self.db.get_feeds()

        outcomes = await asyncio.gather(
            *(self._refresh_feed(feed.id, feed.url) for feed in feeds),
            return_exceptions=True,
        )

        refreshed = failed = new_articles = 0
        for feed, outcome in zip(feeds, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                failed += 1
                self.db.update_feed_fetched(feed.id, error=str(outcome))
                logger.warning(
                    f"Feed refresh failed for {feed.url}: {outcome}",
                    extra={"feed_id": feed.id, "url": feed.url, "error": str(outcome)},
                )
            else:
                refreshed += 1
                new_articles += outcome

        logger.info(
            "Feed refresh finished",
            extra={"refreshed": refreshed, "failed": failed, "new_articles": new_articles},
        )
        return {"refreshed": refreshed, "failed": failed, "new_articles": new_articles}

    async def _refresh_feed(self, feed_id: int, url: str) -> int:
        async with self._refresh_slots:
            parsed = await self.load_feed(url, fresh=True)
        new_ids = self.db.create_many_articles(feed_id, parsed.items)
        self.db.update_feed_fetched(feed_id)

        if self.auto_summarize:
            await self._queue_summaries(new_ids)
        return len(new_ids)

    async def summarize(self, job: Job) -> dict:
        """
        Summarize one article ({article_id}) or several ({article_ids}).

        Articles that are missing or already summarized are skipped unless
        force is set. RateLimited propagates so the queue retries the job.
        """
        force = bool(job.payload.get("force", False))

        if "article_ids" in job.payload:
            return await self._summarize_many(job.payload["article_ids"], force)

        article_id = job.payload["article_id"]
        article = self.db.get_article_by_id(article_id)
        if article is None:
            logger.warning(f"Article not found for summarization: {article_id}", extra={"article_id": article_id})
            return {"status": "missing", "article_id": article_id}

        if not force and self.db.get_summary_by_article_id(article_id):
            return {"status": "exists", "article_id": article_id}

        result = await self.summarizer.summarize(self._article_text(article), article.title)
        summary = self.db.create_summary(article.id, result)

        return {
            "status": "summarized",
            "article_id": article.id,
            "summary_id": summary.id,
            "model": result.model,
            "cached": result.cached,
        }

    async def _summarize_many(self, article_ids: list[int], force: bool) -> dict:
        inputs = []
        for article_id in article_ids:
            article = self.db.get_article_by_id(article_id)
            if article is None:
                continue
            if not force and self.db.get_summary_by_article_id(article_id):
                continue
            inputs.append(ArticleInput(
                id=article.id,
                title=article.title,
                content=extract_plain_text(article.content),
                description=extract_plain_text(article.description),
            ))

        results = await self.summarizer.summarize_batch(inputs)
        for article_id, result in results.items():
            self.db.create_summary(article_id, result)

        return {
            "summarized": len(results),
            "skipped": len(article_ids) - len(inputs),
            "failed": len(inputs) - len(results),
        }

    async def cleanup(self, job: Job) -> dict:
        """Sweep expired cache keys and old finished jobs."""
        grace = job.payload.get("grace", 86400)

        cache_removed = await self.cache.cleanup_expired()
        jobs_removed = {}
        for queue_name in self.jobs.queue_names:
            jobs_removed[queue_name] = await self.jobs.clean_queue(queue_name, grace)

        return {"cache_entries_removed": cache_removed, "jobs_removed": jobs_removed}

    # ─────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────

    @staticmethod
    def _article_text(article) -> str:
        return extract_plain_text(article.content) or extract_plain_text(article.description)

    async def _queue_summaries(self, article_ids: list[int]) -> None:
        for article_id in article_ids:
            await self.jobs.add_job(JobType.SUMMARIZE, {"article_id": article_id})
