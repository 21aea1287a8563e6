"""
Feed routes: ingestion and refresh requests, feed listing.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from ..database import Database
from ..exceptions import require_resource
from ..jobs import JobService, JobType
from ..schemas import FeedResponse, IngestFeedRequest, JobAcceptedResponse
from ..services import Services, get_db, get_jobs, get_services
from ..url_validator import SSRFError, validate_url

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/feeds", tags=["feeds"])


@router.get("")
async def list_feeds(
    db: Annotated[Database, Depends(get_db)]
) -> list[FeedResponse]:
    """List all ingested feeds."""
    return [FeedResponse.from_db(f) for f in db.get_feeds()]


@router.post("/ingest", status_code=202)
async def ingest_feed(
    body: IngestFeedRequest,
    request: Request,
    response: Response,
    services: Annotated[Services, Depends(get_services)],
) -> JobAcceptedResponse:
    """Queue a feed for ingestion."""
    try:
        validate_url(body.url, resolve_dns=services.resolve_feed_dns)
    except SSRFError as e:
        raise HTTPException(status_code=400, detail=str(e))

    client_ip = request.client.host if request.client else "unknown"
    limit = await services.rate_limiter.check(client_ip, services.api_rate_limit)
    if not limit.allowed:
        raise HTTPException(
            status_code=429,
            detail="Too many requests",
            headers={"Retry-After": str(limit.retry_after)},
        )
    response.headers["X-RateLimit-Remaining"] = str(limit.remaining)

    existing = services.db.get_feed_by_url(body.url)
    if existing:
        raise HTTPException(
            status_code=409,
            detail={"error": "Feed already exists", "feed_id": existing.id},
        )

    job = await services.jobs.add_job(JobType.INGEST, {"url": body.url, "user_id": body.user_id})
    logger.info(f"Feed ingestion queued: {body.url}", extra={"url": body.url, "job_id": job.id})

    return JobAcceptedResponse(job_id=job.id, queue=job.queue)


# ─────────────────────────────────────────────────────────────
# Refresh
# ─────────────────────────────────────────────────────────────

@router.post("/refresh", status_code=202)
async def refresh_feeds(
    jobs: Annotated[JobService, Depends(get_jobs)],
) -> JobAcceptedResponse:
    """Queue a refresh of every stored feed."""
    job = await jobs.add_job(JobType.REFRESH, {})
    return JobAcceptedResponse(job_id=job.id, queue=job.queue)


@router.post("/{feed_id}/refresh", status_code=202)
async def refresh_feed(
    feed_id: int,
    db: Annotated[Database, Depends(get_db)],
    jobs: Annotated[JobService, Depends(get_jobs)],
) -> JobAcceptedResponse:
    """Queue a refresh of one feed."""
    feed = require_resource(db.get_feed(feed_id), "Feed not found")

    job = await jobs.add_job(JobType.REFRESH, {"feed_id": feed.id})
    logger.info(f"Feed refresh queued: {feed.url}", extra={"feed_id": feed.id, "job_id": job.id})
    return JobAcceptedResponse(job_id=job.id, queue=job.queue)
