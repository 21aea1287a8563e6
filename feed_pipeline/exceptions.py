"""
Error taxonomy for the pipeline, plus HTTP helpers for the route layer.

Only JobExhausted (and startup failures) are meant to reach operators. Everything
else is retried by its owner or absorbed into a degraded result.
"""

from typing import TYPE_CHECKING, TypeVar

from fastapi import HTTPException

if TYPE_CHECKING:
    from .jobs import Job

T = TypeVar("T")


class PipelineError(Exception):
    """Base class for pipeline errors."""


class TransientFetchError(PipelineError):
    """Network or HTTP failure during a single fetch attempt. Retried."""


class FetchFailed(PipelineError):
    """All fetch attempts for a feed failed."""

    def __init__(self, url: str, attempts: int, last_error: Exception | None):
        self.url = url
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Failed to fetch feed after {attempts} attempts: {last_error}")


class MalformedFeedError(PipelineError):
    """The document was fetched but holds no usable feed metadata. Not retried."""


class RateLimited(PipelineError):
    """Summarization budget exhausted."""

    def __init__(self, retry_after: int | None, message: str = "Rate limit exceeded for summarization"):
        self.retry_after = retry_after
        super().__init__(message)


class CapabilityError(PipelineError):
    """The external summarization capability failed."""


class CacheUnavailable(PipelineError):
    """The backing cache store could not be reached."""


class JobExhausted(PipelineError):
    """A job failed on every configured attempt."""

    def __init__(self, job: "Job"):
        self.job = job
        super().__init__(
            f"Job {job.id} ({job.type.value}) failed after {job.attempts_made} attempts: {job.failed_reason}"
        )


class JobAbandoned(PipelineError):
    """The job's queue closed before the job reached a terminal state."""

    def __init__(self, job: "Job"):
        self.job = job
        super().__init__(f"Job {job.id} ({job.type.value}) abandoned in state {job.state.value}: queue {job.queue} closed")


def require_resource(resource: T | None, detail: str = "Resource not found") -> T:
    """
    Raise 404 if resource is None, otherwise return the resource.

    Usage:
        article = require_resource(db.get_article_by_id(id), "Article not found")
    """
    if resource is None:
        raise HTTPException(status_code=404, detail=detail)
    return resource


def require_article(article: T | None) -> T:
    """Raise 404 if article is None."""
    return require_resource(article, "Article not found")
