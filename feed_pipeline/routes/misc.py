"""
Miscellaneous routes: health check.
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from .. import __version__
from ..cache import MemoryCache
from ..services import Services, get_services

router = APIRouter(tags=["misc"])


@router.get("/health")
async def health_check(
    services: Annotated[Services, Depends(get_services)]
) -> dict:
    """API health check."""
    return {
        "status": "ok",
        "version": __version__,
        "cache": "memory" if isinstance(services.cache, MemoryCache) else "redis",
        "summarizer": services.capability_name,
        "queues": services.jobs.queue_names,
    }
