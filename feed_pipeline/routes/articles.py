"""
Article routes: stored articles, newest first.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from ..database import Database
from ..exceptions import require_article
from ..schemas import ArticleResponse
from ..services import get_db

router = APIRouter(prefix="/articles", tags=["articles"])


@router.get("")
async def list_articles(
    db: Annotated[Database, Depends(get_db)],
    feed_id: int | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> list[ArticleResponse]:
    """Get articles, optionally for one feed."""
    articles = db.get_articles(feed_id=feed_id, limit=limit, offset=offset)
    return [ArticleResponse.from_db(a) for a in articles]


@router.get("/{article_id}")
async def get_article(
    article_id: int,
    db: Annotated[Database, Depends(get_db)],
) -> ArticleResponse:
    return ArticleResponse.from_db(require_article(db.get_article_by_id(article_id)))
