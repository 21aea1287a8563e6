"""
Job routes: queue statistics and job status.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from ..exceptions import require_resource
from ..jobs import JobService
from ..schemas import JobResponse, QueueStatsResponse
from ..services import get_jobs

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.get("/stats")
async def all_queue_stats(
    jobs: Annotated[JobService, Depends(get_jobs)]
) -> dict[str, QueueStatsResponse]:
    return {name: QueueStatsResponse(**stats) for name, stats in jobs.get_all_queue_stats().items()}


@router.get("/{queue}/stats")
async def queue_stats(
    queue: str,
    jobs: Annotated[JobService, Depends(get_jobs)]
) -> QueueStatsResponse:
    try:
        return QueueStatsResponse(**jobs.get_queue_stats(queue))
    except KeyError:
        raise HTTPException(status_code=404, detail="Queue not found")


@router.get("/{queue}/{job_id}")
async def get_job(
    queue: str,
    job_id: str,
    jobs: Annotated[JobService, Depends(get_jobs)]
) -> JobResponse:
    try:
        job = jobs.get_job(queue, job_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Queue not found")
    return JobResponse.from_job(require_resource(job, "Job not found"))
