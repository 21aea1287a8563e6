"""
API route modules.
"""

from .articles import router as articles_router
from .feeds import router as feeds_router
from .jobs import router as jobs_router
from .misc import router as misc_router
from .summaries import router as summaries_router

__all__ = [
    "articles_router",
    "feeds_router",
    "jobs_router",
    "misc_router",
    "summaries_router",
]
