"""
Summary routes: request summarization, read stored summaries.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from ..database import Database
from ..exceptions import require_article, require_resource
from ..jobs import JobService, JobType
from ..schemas import BatchSummarizeRequest, JobAcceptedResponse, SummarizeRequest, SummaryResponse
from ..services import get_db, get_jobs

router = APIRouter(prefix="/summaries", tags=["summaries"])

MAX_BATCH_ARTICLES = 10


@router.post("", status_code=202)
async def request_summary(
    body: SummarizeRequest,
    db: Annotated[Database, Depends(get_db)],
    jobs: Annotated[JobService, Depends(get_jobs)],
) -> JobAcceptedResponse:
    """Queue an article for summarization."""
    require_article(db.get_article_by_id(body.article_id))

    job = await jobs.add_job(JobType.SUMMARIZE, {"article_id": body.article_id, "force": body.force})
    return JobAcceptedResponse(job_id=job.id, queue=job.queue)


@router.post("/batch", status_code=202)
async def request_batch_summary(
    body: BatchSummarizeRequest,
    db: Annotated[Database, Depends(get_db)],
    jobs: Annotated[JobService, Depends(get_jobs)],
) -> JobAcceptedResponse:
    """Queue several articles for summarization as one job. Unknown IDs are dropped."""
    if not body.article_ids:
        raise HTTPException(status_code=400, detail="No article IDs provided")

    if len(body.article_ids) > MAX_BATCH_ARTICLES:
        raise HTTPException(status_code=400, detail=f"Maximum {MAX_BATCH_ARTICLES} articles per batch")

    article_ids = [
        article_id for article_id in dict.fromkeys(body.article_ids)
        if db.get_article_by_id(article_id)
    ]
    if not article_ids:
        raise HTTPException(status_code=404, detail="No valid articles found")

    job = await jobs.add_job(JobType.SUMMARIZE, {"article_ids": article_ids, "force": body.force})
    return JobAcceptedResponse(job_id=job.id, queue=job.queue)


@router.get("/{article_id}")
async def get_summary(
    article_id: int,
    db: Annotated[Database, Depends(get_db)],
) -> SummaryResponse:
    summary = require_resource(db.get_summary_by_article_id(article_id), "Summary not found")
    return SummaryResponse.from_db(summary)
