"""
Feed Pipeline API Server

FastAPI application providing endpoints for:
- Feed ingestion (queued)
- Summarization requests and stored summaries
- Job queue statistics
- Health
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from . import __version__
from .config import config, setup_logging
from .routes import articles_router, feeds_router, jobs_router, misc_router, summaries_router
from .services import Services, build_services

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize and cleanup pipeline resources."""
    # Startup - skip building if services were injected (e.g., by tests)
    if getattr(app.state, "services", None) is None:
        app.state.services = build_services(config)

    services: Services = app.state.services
    await services.start()

    yield

    # Shutdown
    await services.close()


def create_app(services: Services | None = None) -> FastAPI:
    app = FastAPI(
        title="Feed Pipeline API",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services

    app.include_router(misc_router)
    app.include_router(feeds_router)
    app.include_router(articles_router)
    app.include_router(summaries_router)
    app.include_router(jobs_router)
    return app


app = create_app()


def main():
    setup_logging(config.LOG_LEVEL, config.LOG_FORMAT)
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)


if __name__ == "__main__":
    main()
