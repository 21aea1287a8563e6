"""
Pytest fixtures for pipeline tests.
"""

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from feed_pipeline.cache import MemoryCache
from feed_pipeline.database import Database
from feed_pipeline.feeds import FeedFetcher, parse_feed_sync
from feed_pipeline.jobs import Backoff, JobOptions, JobService
from feed_pipeline.rate_limit import RateLimitConfig, RateLimiter
from feed_pipeline.server import create_app
from feed_pipeline.services import Services
from feed_pipeline.summarizer import CapabilityOutcome, MockSummaryCapability, Summarizer, SummaryDraft
from feed_pipeline.tasks import TaskRunner


SAMPLE_RSS = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Example Tech Blog</title>
    <link>https://blog.example.com</link>
    <description>Posts about software</description>
    <language>en-us</language>
    <ttl>60</ttl>
    <item>
      <title>First Post</title>
      <link>https://blog.example.com/first</link>
      <guid>post-1</guid>
      <description><![CDATA[<p>Hello <script>alert(1)</script><b>world</b></p>]]></description>
      <pubDate>Mon, 06 Jan 2025 10:00:00 GMT</pubDate>
      <category>software</category>
    </item>
    <item>
      <title>Second Post</title>
      <link>https://blog.example.com/second</link>
      <description>The release was a great success.</description>
      <pubDate>Tue, 07 Jan 2025 10:00:00 GMT</pubDate>
    </item>
  </channel>
</rss>
"""

UPDATED_RSS = SAMPLE_RSS.replace(
    "  </channel>",
    """    <item>
      <title>Third Post</title>
      <link>https://blog.example.com/third</link>
      <guid>post-3</guid>
    </item>
  </channel>""",
)

SAMPLE_ATOM = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Atom Example</title>
  <link href="https://atom.example.com/"/>
  <updated>2025-01-08T12:00:00Z</updated>
  <id>urn:uuid:feed-1</id>
  <entry>
    <title>Atom Entry</title>
    <link href="https://atom.example.com/entry"/>
    <id>urn:uuid:entry-1</id>
    <updated>2025-01-08T12:00:00Z</updated>
    <content type="html">&lt;p&gt;Entry body&lt;/p&gt;</content>
  </entry>
</feed>
"""


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class ScriptedCapability:
    """Summary capability that returns queued outcomes and records calls."""

    model = "scripted"

    def __init__(self):
        self.calls: list[dict] = []
        self.outcomes: list[CapabilityOutcome] = []

    def queue(self, outcome: CapabilityOutcome):
        self.outcomes.append(outcome)

    async def summarize(self, title, content, max_tokens, temperature) -> CapabilityOutcome:
        self.calls.append({"title": title, "content": content})
        if self.outcomes:
            return self.outcomes.pop(0)
        return CapabilityOutcome.succeeded(SummaryDraft(
            content=f"Summary of {title or 'article'}",
            key_points=["one", "two"],
            sentiment="positive",
            categories=["Tech"],
            model=self.model,
            input_tokens=10,
            output_tokens=5,
            cost=0.001,
        ))


class StubFetcher(FeedFetcher):
    """Fetcher that parses canned documents instead of hitting the network."""

    def __init__(self, documents: dict[str, str] | None = None):
        super().__init__(retry_delay=0)
        self.documents = documents or {}
        self.calls: list[str] = []

    async def ingest(self, url: str):
        self.calls.append(url)
        if url not in self.documents:
            raise RuntimeError(f"no document for {url}")
        return parse_feed_sync(self.documents[url], url)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_cache(clock):
    return MemoryCache(clock=clock)


@pytest.fixture
def test_db(tmp_path: Path):
    """Create a test database instance."""
    return Database(tmp_path / "pipeline.db")


@pytest.fixture
def sample_feed():
    return parse_feed_sync(SAMPLE_RSS, "https://blog.example.com/feed.xml")


@pytest.fixture
def scripted_capability():
    return ScriptedCapability()


@pytest.fixture
def summarizer(memory_cache, scripted_capability):
    return Summarizer(
        capability=scripted_capability,
        cache=memory_cache,
        rate_limiter=RateLimiter(memory_cache),
        batch_delay=0,
    )


@pytest.fixture
def fast_job_options():
    """Default job options with no backoff wait."""
    return JobOptions(backoff=Backoff("fixed", 0))


@pytest.fixture
def make_services(tmp_path, memory_cache, fast_job_options):
    """Build a Services container around a stub fetcher."""

    def _make(documents: dict[str, str] | None = None, api_limit: int = 100, capability=None) -> Services:
        db = Database(tmp_path / "api.db")
        fetcher = StubFetcher(documents)
        rate_limiter = RateLimiter(memory_cache)
        summarizer = Summarizer(
            capability=capability or MockSummaryCapability(),
            cache=memory_cache,
            rate_limiter=rate_limiter,
            batch_delay=0,
        )
        jobs = JobService(default_options=fast_job_options, concurrency=2)
        tasks = TaskRunner(db, memory_cache, fetcher, summarizer, jobs)
        return Services(
            db=db,
            cache=memory_cache,
            rate_limiter=rate_limiter,
            fetcher=fetcher,
            summarizer=summarizer,
            jobs=jobs,
            tasks=tasks,
            api_rate_limit=RateLimitConfig(api_limit, 60_000, "ratelimit:api"),
            resolve_feed_dns=False,
        )

    return _make


FEED_URL = "https://blog.example.com/feed.xml"


@pytest.fixture
def client(make_services):
    """Test client over isolated services that can ingest FEED_URL."""
    services = make_services({FEED_URL: SAMPLE_RSS})
    with TestClient(create_app(services), raise_server_exceptions=False) as test_client:
        yield test_client, services


@pytest.fixture
def limited_client(make_services):
    """Test client whose ingest endpoint allows two requests per window."""
    services = make_services({FEED_URL: SAMPLE_RSS}, api_limit=2)
    with TestClient(create_app(services), raise_server_exceptions=False) as test_client:
        yield test_client
