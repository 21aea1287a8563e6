"""
Pydantic models for API request/response validation.
"""

from typing import Any

from pydantic import BaseModel, Field

from .database import DBArticle, DBFeed, DBSummary
from .jobs import Job


# ─────────────────────────────────────────────────────────────
# Feed Schemas
# ─────────────────────────────────────────────────────────────

class IngestFeedRequest(BaseModel):
    url: str = Field(min_length=1)
    user_id: str | None = None


class FeedResponse(BaseModel):
    id: int
    url: str
    title: str
    description: str | None = None
    link: str | None = None
    language: str | None = None
    article_count: int = 0
    last_fetched: str | None = None
    fetch_error: str | None = None

    @classmethod
    def from_db(cls, feed: DBFeed) -> "FeedResponse":
        return cls(
            id=feed.id,
            url=feed.url,
            title=feed.title,
            description=feed.description,
            link=feed.link,
            language=feed.language,
            article_count=feed.article_count,
            last_fetched=feed.last_fetched.isoformat() if feed.last_fetched else None,
            fetch_error=feed.fetch_error,
        )


# ─────────────────────────────────────────────────────────────
# Article Schemas
# ─────────────────────────────────────────────────────────────

class ArticleResponse(BaseModel):
    id: int
    feed_id: int
    guid: str
    title: str
    link: str
    description: str | None = None
    author: str | None = None
    categories: list[str] = []
    reading_time: int | None = None
    published_at: str | None = None

    @classmethod
    def from_db(cls, article: DBArticle) -> "ArticleResponse":
        return cls(
            id=article.id,
            feed_id=article.feed_id,
            guid=article.guid,
            title=article.title,
            link=article.link,
            description=article.description,
            author=article.author,
            categories=article.categories,
            reading_time=article.reading_time,
            published_at=article.published_at.isoformat() if article.published_at else None,
        )


# ─────────────────────────────────────────────────────────────
# Summary Schemas
# ─────────────────────────────────────────────────────────────

class SummarizeRequest(BaseModel):
    article_id: int
    force: bool = False


class BatchSummarizeRequest(BaseModel):
    article_ids: list[int]
    force: bool = False


class SummaryResponse(BaseModel):
    article_id: int
    content: str
    key_points: list[str]
    sentiment: str
    categories: list[str]
    confidence: float
    model: str
    tokens: int
    processing_time_ms: int
    cost: float
    created_at: str | None = None

    @classmethod
    def from_db(cls, summary: DBSummary) -> "SummaryResponse":
        return cls(
            article_id=summary.article_id,
            content=summary.content,
            key_points=summary.key_points,
            sentiment=summary.sentiment,
            categories=summary.categories,
            confidence=summary.confidence,
            model=summary.model,
            tokens=summary.tokens,
            processing_time_ms=summary.processing_time_ms,
            cost=summary.cost,
            created_at=summary.created_at.isoformat() if summary.created_at else None,
        )


# ─────────────────────────────────────────────────────────────
# Job Schemas
# ─────────────────────────────────────────────────────────────

class JobAcceptedResponse(BaseModel):
    """Returned when work has been queued rather than performed."""
    job_id: str
    queue: str
    status: str = "queued"


class QueueStatsResponse(BaseModel):
    waiting: int
    active: int
    completed: int
    failed: int
    delayed: int
    total: int


class JobResponse(BaseModel):
    id: str
    type: str
    queue: str
    state: str
    attempts_made: int
    max_attempts: int
    failed_reason: str | None = None
    return_value: Any = None
    created_at: float
    processed_at: float | None = None
    finished_at: float | None = None

    @classmethod
    def from_job(cls, job: Job) -> "JobResponse":
        data = job.to_dict()
        data.pop("payload")
        return cls(**data)
