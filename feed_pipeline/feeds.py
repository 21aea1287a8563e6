"""
Feed Fetcher - Fetch and parse RSS/Atom feeds.

Handles:
- RSS 2.0 and Atom 1.0 formats
- Bounded retries with linear backoff for transient failures
- HTML sanitization of item bodies
- Stable item identities (guid -> link -> title/date composite)

No caching happens here; callers wrap ingest() with cache-aside logic.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone

import aiohttp
import feedparser
from tenacity import AsyncRetrying, RetryCallState, RetryError, retry_if_exception_type, stop_after_attempt, wait_incrementing

from .exceptions import FetchFailed, MalformedFeedError, TransientFetchError
from .sanitize import sanitize_html

logger = logging.getLogger(__name__)

ACCEPT_HEADER = "application/rss+xml, application/atom+xml, application/xml, text/xml"


@dataclass
class FeedImage:
    url: str | None = None
    title: str | None = None
    link: str | None = None
    width: int | None = None
    height: int | None = None


@dataclass
class Enclosure:
    url: str
    type: str | None = None
    length: int | None = None


@dataclass
class ItemSource:
    url: str | None = None
    title: str | None = None


@dataclass
class FeedMeta:
    """Feed-level metadata from one successful fetch."""
    url: str
    title: str
    description: str | None = None
    link: str | None = None
    language: str | None = None
    copyright: str | None = None
    category: str | None = None
    generator: str | None = None
    ttl: int | None = None
    image: FeedImage | None = None
    pub_date: datetime | None = None
    last_build_date: datetime | None = None


@dataclass
class FeedItem:
    """Represents a single item/entry from a feed."""
    guid: str
    title: str
    link: str
    description: str | None = None
    content: str | None = None
    author: str | None = None
    categories: list[str] = field(default_factory=list)
    comments: str | None = None
    enclosure: Enclosure | None = None
    pub_date: datetime | None = None
    source: ItemSource | None = None


@dataclass
class ParsedFeed:
    """Result of one fetch: metadata and items, fully populated."""
    meta: FeedMeta
    items: list[FeedItem]

    def to_dict(self) -> dict:
        """JSON-safe representation for caching."""
        return _encode(asdict(self))

    @classmethod
    def from_dict(cls, data: dict) -> "ParsedFeed":
        meta = dict(data["meta"])
        meta["image"] = FeedImage(**meta["image"]) if meta.get("image") else None
        for key in ("pub_date", "last_build_date"):
            meta[key] = _decode_datetime(meta.get(key))

        items = []
        for raw in data["items"]:
            item = dict(raw)
            item["enclosure"] = Enclosure(**item["enclosure"]) if item.get("enclosure") else None
            item["source"] = ItemSource(**item["source"]) if item.get("source") else None
            item["pub_date"] = _decode_datetime(item.get("pub_date"))
            items.append(FeedItem(**_known_fields(FeedItem, item)))

        return cls(meta=FeedMeta(**_known_fields(FeedMeta, meta)), items=items)


def _encode(value):
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _encode(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_encode(v) for v in value]
    return value


def _decode_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _known_fields(cls, data: dict) -> dict:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


def _to_datetime(struct) -> datetime | None:
    """Convert feedparser's UTC time.struct_time to an aware datetime."""
    if not struct:
        return None
    try:
        return datetime(*struct[:6], tzinfo=timezone.utc)
    except (TypeError, ValueError):
        return None


def _to_int(value) -> int | None:
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


class FeedFetcher:
    """Fetches feeds over HTTP and parses them into ParsedFeed."""

    def __init__(
        self,
        user_agent: str = "FeedPipeline/1.0",
        timeout: float = 30,
        max_retries: int = 3,
        retry_delay: float = 2.0,
    ):
        self.user_agent = user_agent
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay

    async def ingest(self, url: str) -> ParsedFeed:
        """
        Fetch and parse a feed, retrying transient failures.

        Waits retry_delay * n seconds after failed attempt n. Malformed feeds
        are not retried.

        Raises:
            FetchFailed: every attempt hit a transient failure
            MalformedFeedError: the document carries no feed metadata
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_incrementing(start=self.retry_delay, increment=self.retry_delay),
            retry=retry_if_exception_type(TransientFetchError),
            before_sleep=lambda state: self._log_retry(url, state),
        )

        try:
            async for attempt in retrying:
                with attempt:
                    logger.info(
                        f"Fetching feed {url}",
                        extra={"url": url, "attempt": attempt.retry_state.attempt_number},
                    )
                    feed = await self._fetch_and_parse(url)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            logger.error(
                f"Feed fetch failed permanently for {url}",
                extra={"url": url, "attempts": e.last_attempt.attempt_number, "error": str(last_error)},
            )
            raise FetchFailed(url, e.last_attempt.attempt_number, last_error) from last_error

        logger.info(
            f"Feed ingested successfully: {feed.meta.title}",
            extra={"url": url, "item_count": len(feed.items)},
        )
        return feed

    def _log_retry(self, url: str, retry_state: RetryCallState):
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            f"Feed fetch failed, retrying: {error}",
            extra={
                "url": url,
                "attempt": retry_state.attempt_number,
                "error": str(error),
                "retry_in": retry_state.next_action.sleep if retry_state.next_action else None,
            },
        )

    async def _fetch_and_parse(self, url: str) -> ParsedFeed:
        """Single attempt: download then parse."""
        content = await self._download(url)
        return self._parse(url, content)

    async def _download(self, url: str) -> bytes:
        headers = {"User-Agent": self.user_agent, "Accept": ACCEPT_HEADER}

        try:
            async with aiohttp.ClientSession(headers=headers) as session:
                async with session.get(
                    url,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as resp:
                    if not 200 <= resp.status < 300:
                        raise TransientFetchError(f"HTTP {resp.status}: {resp.reason}")
                    return await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientFetchError(f"Request failed: {str(e) or type(e).__name__}") from e

    def _parse(self, url: str, content: bytes | str) -> ParsedFeed:
        """Parse feed content using feedparser."""
        parsed = feedparser.parse(content)
        feed = parsed.feed

        if not parsed.version and not feed.get("title"):
            cause = parsed.get("bozo_exception")
            detail = f": {cause}" if cause else ""
            raise MalformedFeedError(f"No feed metadata found{detail}")

        tags = feed.get("tags") or []
        image = feed.get("image")

        meta = FeedMeta(
            url=url,
            title=feed.get("title") or "Untitled Feed",
            description=feed.get("subtitle") or feed.get("description"),
            link=feed.get("link"),
            language=feed.get("language"),
            copyright=feed.get("rights"),
            category=tags[0].get("term") if tags else None,
            generator=feed.get("generator"),
            ttl=_to_int(feed.get("ttl")),
            image=FeedImage(
                url=image.get("href") or image.get("url"),
                title=image.get("title"),
                link=image.get("link"),
                width=_to_int(image.get("width")),
                height=_to_int(image.get("height")),
            ) if image else None,
            pub_date=_to_datetime(feed.get("published_parsed")),
            last_build_date=_to_datetime(feed.get("updated_parsed")),
        )

        items = [self._parse_entry(entry) for entry in parsed.entries]
        return ParsedFeed(meta=meta, items=items)

    def _parse_entry(self, entry) -> FeedItem:
        title = entry.get("title") or "Untitled"
        link = entry.get("link") or entry.get("id") or ""

        # Identity must survive refetches: feed guid, then link, then title+date
        published_raw = entry.get("published") or entry.get("updated") or ""
        guid = entry.get("id") or entry.get("link") or f"{title}-{published_raw}"

        summary = entry.get("summary")
        if entry.get("content"):
            body = entry.content[0].value
        else:
            body = summary

        enclosure = None
        if entry.get("enclosures"):
            first = entry.enclosures[0]
            if first.get("href"):
                enclosure = Enclosure(
                    url=first.get("href"),
                    type=first.get("type"),
                    length=_to_int(first.get("length")),
                )

        source = None
        if entry.get("source"):
            source = ItemSource(url=entry.source.get("href"), title=entry.source.get("title"))

        return FeedItem(
            guid=guid,
            title=title,
            link=link,
            description=sanitize_html(summary) if summary else None,
            content=sanitize_html(body) if body else None,
            author=entry.get("author"),
            categories=[t.get("term") for t in entry.get("tags", []) if t.get("term")],
            comments=entry.get("comments"),
            enclosure=enclosure,
            pub_date=_to_datetime(entry.get("published_parsed") or entry.get("updated_parsed")),
            source=source,
        )


def parse_feed_sync(content: str | bytes, url: str = "") -> ParsedFeed:
    """
    Synchronous feed parsing (for use when content is already fetched).

    Useful for testing or when you already have the feed content.
    """
    return FeedFetcher()._parse(url, content)
