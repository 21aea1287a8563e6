"""
Database - SQLite storage for feeds, articles and summaries.

Uses raw SQLite for simplicity (no ORM). Inserts are idempotent on natural
keys: feed URL, and (feed, guid) for articles.
"""

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Iterator

from .sanitize import calculate_reading_time, extract_plain_text

if TYPE_CHECKING:
    from .feeds import FeedItem, FeedMeta
    from .summarizer import SummaryResult


@dataclass
class DBFeed:
    id: int
    url: str
    title: str
    description: str | None
    link: str | None
    language: str | None
    image_url: str | None
    user_id: str | None
    last_fetched: datetime | None
    fetch_error: str | None = None
    article_count: int = 0


@dataclass
class DBArticle:
    id: int
    feed_id: int
    guid: str
    title: str
    link: str
    description: str | None
    content: str | None
    author: str | None
    categories: list[str] = field(default_factory=list)
    reading_time: int | None = None
    published_at: datetime | None = None
    created_at: datetime | None = None


@dataclass
class DBSummary:
    id: int
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
    created_at: datetime | None = None


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _parse_list(value: str | None) -> list[str]:
    if not value:
        return []
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return []


class Database:
    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @contextmanager
    def _conn(self) -> Iterator[sqlite3.Connection]:
        """Get database connection with row factory."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def _init_schema(self):
        with self._conn() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS feeds (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    url TEXT UNIQUE NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT,
                    link TEXT,
                    language TEXT,
                    image_url TEXT,
                    user_id TEXT,
                    last_fetched TIMESTAMP,
                    fetch_error TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS articles (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    feed_id INTEGER NOT NULL REFERENCES feeds(id) ON DELETE CASCADE,
                    guid TEXT NOT NULL,
                    title TEXT NOT NULL,
                    link TEXT NOT NULL,
                    description TEXT,
                    content TEXT,
                    author TEXT,
                    categories TEXT,
                    reading_time INTEGER,
                    published_at TIMESTAMP,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE (feed_id, guid)
                );

                CREATE TABLE IF NOT EXISTS summaries (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    article_id INTEGER UNIQUE NOT NULL REFERENCES articles(id) ON DELETE CASCADE,
                    content TEXT NOT NULL,
                    key_points TEXT,
                    sentiment TEXT NOT NULL,
                    categories TEXT,
                    confidence REAL NOT NULL,
                    model TEXT NOT NULL,
                    tokens INTEGER DEFAULT 0,
                    processing_time_ms INTEGER DEFAULT 0,
                    cost REAL DEFAULT 0,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );

                CREATE INDEX IF NOT EXISTS idx_articles_feed ON articles(feed_id);
                CREATE INDEX IF NOT EXISTS idx_articles_published ON articles(published_at DESC);
            """)

    # ─────────────────────────────────────────────────────────────
    # Feeds
    # ─────────────────────────────────────────────────────────────

    def create_feed(self, meta: "FeedMeta", user_id: str | None = None) -> DBFeed:
        """Store a feed. Returns the existing row if the URL is already known."""
        with self._conn() as conn:
            conn.execute(
                """INSERT OR IGNORE INTO feeds
                   (url, title, description, link, language, image_url, user_id, last_fetched)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (meta.url, meta.title, meta.description, meta.link, meta.language,
                 meta.image.url if meta.image else None, user_id, datetime.now().isoformat())
            )
        return self.get_feed_by_url(meta.url)

    def get_feed(self, feed_id: int) -> DBFeed | None:
        with self._conn() as conn:
            row = conn.execute(
                """SELECT f.*, COUNT(a.id) as article_count
                   FROM feeds f
                   LEFT JOIN articles a ON f.id = a.feed_id
                   WHERE f.id = ?
                   GROUP BY f.id""",
                (feed_id,)
            ).fetchone()
            return self._row_to_feed(row) if row else None

    def get_feed_by_url(self, url: str) -> DBFeed | None:
        with self._conn() as conn:
            row = conn.execute(
                """SELECT f.*, COUNT(a.id) as article_count
                   FROM feeds f
                   LEFT JOIN articles a ON f.id = a.feed_id
                   WHERE f.url = ?
                   GROUP BY f.id""",
                (url,)
            ).fetchone()
            return self._row_to_feed(row) if row else None

    def get_feeds(self) -> list[DBFeed]:
        """Get all feeds with article counts."""
        with self._conn() as conn:
            rows = conn.execute("""
                SELECT f.*, COUNT(a.id) as article_count
                FROM feeds f
                LEFT JOIN articles a ON f.id = a.feed_id
                GROUP BY f.id
                ORDER BY f.id
            """).fetchall()
            return [self._row_to_feed(row) for row in rows]

    def update_feed_fetched(self, feed_id: int, error: str | None = None):
        """Record a fetch attempt; error=None clears any previous error."""
        with self._conn() as conn:
            conn.execute(
                "UPDATE feeds SET last_fetched = ?, fetch_error = ? WHERE id = ?",
                (datetime.now().isoformat(), error, feed_id)
            )

    # ─────────────────────────────────────────────────────────────
    # Articles
    # ─────────────────────────────────────────────────────────────

    def create_many_articles(self, feed_id: int, items: list["FeedItem"]) -> list[int]:
        """Insert items, skipping guids the feed already has. Returns new article IDs."""
        new_ids = []
        with self._conn() as conn:
            for item in items:
                text = extract_plain_text(item.content or item.description)
                cursor = conn.execute(
                    """INSERT OR IGNORE INTO articles
                       (feed_id, guid, title, link, description, content, author,
                        categories, reading_time, published_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (feed_id, item.guid, item.title, item.link, item.description,
                     item.content, item.author, json.dumps(item.categories),
                     calculate_reading_time(text) if text else None,
                     item.pub_date.isoformat() if item.pub_date else None)
                )
                if cursor.rowcount == 1:
                    new_ids.append(cursor.lastrowid)
        return new_ids

    def get_article_by_id(self, article_id: int) -> DBArticle | None:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT * FROM articles WHERE id = ?", (article_id,)
            ).fetchone()
            return self._row_to_article(row) if row else None

    def get_articles(self, feed_id: int | None = None, limit: int = 50, offset: int = 0) -> list[DBArticle]:
        query = "SELECT * FROM articles"
        params: list = []
        if feed_id is not None:
            query += " WHERE feed_id = ?"
            params.append(feed_id)
        query += " ORDER BY published_at DESC NULLS LAST, id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        with self._conn() as conn:
            rows = conn.execute(query, params).fetchall()
            return [self._row_to_article(row) for row in rows]

    # ─────────────────────────────────────────────────────────────
    # Summaries
    # ─────────────────────────────────────────────────────────────

    def create_summary(self, article_id: int, result: "SummaryResult") -> DBSummary:
        """Store a summary, replacing any previous one for the article."""
        with self._conn() as conn:
            conn.execute(
                """INSERT INTO summaries
                   (article_id, content, key_points, sentiment, categories, confidence,
                    model, tokens, processing_time_ms, cost)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(article_id) DO UPDATE SET
                     content = excluded.content,
                     key_points = excluded.key_points,
                     sentiment = excluded.sentiment,
                     categories = excluded.categories,
                     confidence = excluded.confidence,
                     model = excluded.model,
                     tokens = excluded.tokens,
                     processing_time_ms = excluded.processing_time_ms,
                     cost = excluded.cost,
                     created_at = CURRENT_TIMESTAMP""",
                (article_id, result.content, json.dumps(result.key_points),
                 result.sentiment.value, json.dumps(result.categories), result.confidence,
                 result.model, result.tokens, result.processing_time_ms, result.cost)
            )
        return self.get_summary_by_article_id(article_id)

    def get_summary_by_article_id(self, article_id: int) -> DBSummary | None:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT * FROM summaries WHERE article_id = ?", (article_id,)
            ).fetchone()
            return self._row_to_summary(row) if row else None

    def _row_to_feed(self, row: sqlite3.Row) -> DBFeed:
        try:
            article_count = row["article_count"] or 0
        except (IndexError, KeyError):
            article_count = 0

        return DBFeed(
            id=row["id"],
            url=row["url"],
            title=row["title"],
            description=row["description"],
            link=row["link"],
            language=row["language"],
            image_url=row["image_url"],
            user_id=row["user_id"],
            last_fetched=_parse_datetime(row["last_fetched"]),
            fetch_error=row["fetch_error"],
            article_count=article_count,
        )

    def _row_to_article(self, row: sqlite3.Row) -> DBArticle:
        return DBArticle(
            id=row["id"],
            feed_id=row["feed_id"],
            guid=row["guid"],
            title=row["title"],
            link=row["link"],
            description=row["description"],
            content=row["content"],
            author=row["author"],
            categories=_parse_list(row["categories"]),
            reading_time=row["reading_time"],
            published_at=_parse_datetime(row["published_at"]),
            created_at=_parse_datetime(row["created_at"]),
        )

    def _row_to_summary(self, row: sqlite3.Row) -> DBSummary:
        return DBSummary(
            id=row["id"],
            article_id=row["article_id"],
            content=row["content"],
            key_points=_parse_list(row["key_points"]),
            sentiment=row["sentiment"],
            categories=_parse_list(row["categories"]),
            confidence=row["confidence"],
            model=row["model"],
            tokens=row["tokens"] or 0,
            processing_time_ms=row["processing_time_ms"] or 0,
            cost=row["cost"] or 0.0,
            created_at=_parse_datetime(row["created_at"]),
        )
