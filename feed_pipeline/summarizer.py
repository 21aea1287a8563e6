"""
Summarizer - Cached, rate-limited article summarization.

Features:
- Content-addressed summary cache (title is not part of the key)
- Global rate limit shared with every other summarizer instance on the cache
- Pluggable capability: LLM provider (Anthropic, OpenAI) or offline mock
- Degraded fallback summaries when the capability fails
- Batch summarization in small concurrent chunks
"""

import asyncio
import json
import logging
import re
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Protocol

from .cache import CacheBackend, cache_key
from .exceptions import CapabilityError, RateLimited
from .providers import LLMProvider
from .rate_limit import RateLimitConfig, RateLimiter

logger = logging.getLogger(__name__)

MAX_CONTENT_CHARS = 4000
FALLBACK_CHARS = 200
FALLBACK_MODEL = "fallback"
EMPTY_FALLBACK = "No summary available."
DEFAULT_CONFIDENCE = 0.85


class Sentiment(str, Enum):
    POSITIVE = "POSITIVE"
    NEGATIVE = "NEGATIVE"
    NEUTRAL = "NEUTRAL"


def normalize_sentiment(value) -> Sentiment:
    """Map free-form sentiment labels onto the three known values."""
    try:
        return Sentiment(str(value).strip().upper())
    except ValueError:
        return Sentiment.NEUTRAL


@dataclass
class SummaryResult:
    """Structured summary as stored and returned."""
    content: str
    key_points: list[str]
    sentiment: Sentiment
    categories: list[str]
    confidence: float
    model: str
    tokens: int
    processing_time_ms: int
    cost: float
    cached: bool = False
    cache_key: str | None = None

    @property
    def is_fallback(self) -> bool:
        return self.model == FALLBACK_MODEL

    def to_dict(self) -> dict:
        data = asdict(self)
        data["sentiment"] = self.sentiment.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "SummaryResult":
        return cls(
            content=data["content"],
            key_points=list(data.get("key_points") or []),
            sentiment=normalize_sentiment(data.get("sentiment")),
            categories=list(data.get("categories") or []),
            confidence=float(data.get("confidence", 0.0)),
            model=data.get("model", ""),
            tokens=int(data.get("tokens") or 0),
            processing_time_ms=int(data.get("processing_time_ms") or 0),
            cost=float(data.get("cost") or 0.0),
            cached=bool(data.get("cached", False)),
            cache_key=data.get("cache_key"),
        )


@dataclass
class SummarizeOptions:
    max_tokens: int = 500
    temperature: float = 0.3


@dataclass
class SummaryDraft:
    """What a capability produced before the engine scores and prices it."""
    content: str
    key_points: list[str] = field(default_factory=list)
    sentiment: str = "NEUTRAL"
    categories: list[str] = field(default_factory=list)
    model: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0


@dataclass
class CapabilityOutcome:
    """Either a draft or the reason there is none."""
    draft: SummaryDraft | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.draft is not None

    @classmethod
    def succeeded(cls, draft: SummaryDraft) -> "CapabilityOutcome":
        return cls(draft=draft)

    @classmethod
    def failed(cls, error: str) -> "CapabilityOutcome":
        return cls(error=error)


class SummaryCapability(Protocol):
    async def summarize(
        self,
        title: str,
        content: str,
        max_tokens: int,
        temperature: float,
    ) -> CapabilityOutcome:
        ...


# USD per 1M tokens: (input, output)
PRICING = {
    "gpt-4o-mini": (0.15, 0.60),
    "gpt-4o": (2.50, 10.00),
    "claude-haiku-4-5": (1.00, 5.00),
    "claude-sonnet-4-5": (3.00, 15.00),
}
DEFAULT_PRICING = PRICING["gpt-4o-mini"]


def calculate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """Approximate cost of one call from token usage."""
    input_rate, output_rate = PRICING.get(model, DEFAULT_PRICING)
    return (input_tokens / 1_000_000) * input_rate + (output_tokens / 1_000_000) * output_rate


def parse_json_reply(text: str) -> dict:
    """Parse a JSON object from a model reply, tolerating markdown code fences."""
    cleaned = text.strip()
    fenced = re.match(r"^```(?:json)?\s*(.*?)\s*```$", cleaned, re.DOTALL)
    if fenced:
        cleaned = fenced.group(1)

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise CapabilityError(f"Reply is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise CapabilityError("Reply is not a JSON object")
    return data


class LLMSummaryCapability:
    """Summaries from an LLM provider, requested as JSON."""

    SYSTEM_PROMPT = """You are a helpful assistant that summarizes articles. Provide:
1. A concise summary (2-3 sentences)
2. 3-5 key points
3. Overall sentiment (POSITIVE, NEGATIVE, or NEUTRAL)
4. 2-3 relevant categories/tags

Format your response as JSON:
{
  "summary": "...",
  "keyPoints": ["...", "..."],
  "sentiment": "POSITIVE|NEGATIVE|NEUTRAL",
  "categories": ["...", "..."]
}"""

    def __init__(self, provider: LLMProvider, model: str | None = None):
        self.provider = provider
        self.model = model

    async def summarize(
        self,
        title: str,
        content: str,
        max_tokens: int,
        temperature: float,
    ) -> CapabilityOutcome:
        try:
            response = await self.provider.complete_async(
                user_prompt=f"Summarize this article:\n\nTitle: {title}\n\nContent: {content}",
                system_prompt=self.SYSTEM_PROMPT,
                model=self.model,
                max_tokens=max_tokens,
                temperature=temperature,
                json_mode=True,
            )
            data = parse_json_reply(response.text)

            summary = data.get("summary")
            if not summary:
                raise CapabilityError("Reply has no summary")

            return CapabilityOutcome.succeeded(SummaryDraft(
                content=str(summary),
                key_points=[str(p) for p in data.get("keyPoints") or []],
                sentiment=str(data.get("sentiment") or "NEUTRAL"),
                categories=[str(c) for c in data.get("categories") or []],
                model=response.model,
                input_tokens=response.input_tokens,
                output_tokens=response.output_tokens,
                cost=calculate_cost(response.model, response.input_tokens, response.output_tokens),
            ))
        except Exception as e:
            logger.error(
                f"AI summarization failed: {e}",
                extra={"provider": self.provider.name, "title": title, "error": str(e)},
            )
            return CapabilityOutcome.failed(str(e))


class MockSummaryCapability:
    """Deterministic offline summarizer for development without API keys."""

    model = "mock"

    POSITIVE_WORDS = ("success", "great", "excellent")
    NEGATIVE_WORDS = ("fail", "bad", "terrible")
    CATEGORY_PATTERNS = (
        ("Tech", r"\b(tech\w*|software|ai)\b"),
        ("Business", r"\b(business\w*|market\w*)\b"),
        ("Science", r"\b(science\w*|research\w*)\b"),
    )

    async def summarize(
        self,
        title: str,
        content: str,
        max_tokens: int,
        temperature: float,
    ) -> CapabilityOutcome:
        sentences = [s.strip() for s in re.split(r"[.!?]+", content) if s.strip()]
        first = sentences[0] if sentences else "No content available"

        if len(content.split()) > 100 and len(sentences) > 1:
            summary = f"{first}. {sentences[1]}"[:FALLBACK_CHARS]
        else:
            summary = first

        lowered = content.lower()
        if any(word in lowered for word in self.POSITIVE_WORDS):
            sentiment = Sentiment.POSITIVE
        elif any(word in lowered for word in self.NEGATIVE_WORDS):
            sentiment = Sentiment.NEGATIVE
        else:
            sentiment = Sentiment.NEUTRAL

        category = next(
            (name for name, pattern in self.CATEGORY_PATTERNS if re.search(pattern, lowered)),
            "Other",
        )

        return CapabilityOutcome.succeeded(SummaryDraft(
            content=summary,
            key_points=sentences[:3],
            sentiment=sentiment.value,
            categories=[category],
            model=self.model,
        ))


@dataclass
class ArticleInput:
    id: int | str
    title: str
    content: str | None = None
    description: str | None = None


def normalize_content(content: str) -> str:
    """Collapse whitespace so trivially different copies share a cache key."""
    return " ".join(content.split())


def prepare_content(content: str) -> str:
    """Truncate content to what is sent to the capability."""
    if len(content) <= MAX_CONTENT_CHARS:
        return content
    return content[:MAX_CONTENT_CHARS] + "..."


def fallback_summary(content: str, processing_time_ms: int) -> SummaryResult:
    """Degraded summary built from the input itself."""
    if len(content) > FALLBACK_CHARS:
        text = content[:FALLBACK_CHARS] + "..."
    else:
        text = content.strip()

    return SummaryResult(
        content=text or EMPTY_FALLBACK,
        key_points=[],
        sentiment=Sentiment.NEUTRAL,
        categories=[],
        confidence=0.0,
        model=FALLBACK_MODEL,
        tokens=0,
        processing_time_ms=processing_time_ms,
        cost=0.0,
    )


class Summarizer:
    """Summarization engine: cache, rate limit, capability, fallback."""

    def __init__(
        self,
        capability: SummaryCapability,
        cache: CacheBackend,
        rate_limiter: RateLimiter,
        cache_ttl: int = 0,
        rate_limit: RateLimitConfig = RateLimitConfig(100, 3_600_000, "ratelimit:summarizer"),
        batch_size: int = 3,
        batch_delay: float = 1.0,
        options: SummarizeOptions | None = None,
    ):
        """
        Args:
            capability: Produces summary drafts (LLM or mock)
            cache: Shared cache for results and rate-limit counters
            rate_limiter: Limiter consulted before every capability call
            cache_ttl: Seconds to keep summaries, 0 keeps them forever
            rate_limit: Global summarization budget
            batch_size: Articles summarized concurrently per batch chunk
            batch_delay: Seconds to wait between chunks
            options: Default max_tokens/temperature for capability calls
        """
        self.capability = capability
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.cache_ttl = cache_ttl
        self.rate_limit = rate_limit
        self.batch_size = max(1, batch_size)
        self.batch_delay = batch_delay
        self.options = options or SummarizeOptions()

    async def summarize(
        self,
        content: str,
        title: str = "",
        options: SummarizeOptions | None = None,
    ) -> SummaryResult:
        """
        Summarize content, serving repeats from the cache.

        Raises:
            RateLimited: the global budget is exhausted (never retried here)
        """
        options = options or self.options
        started = time.monotonic()
        key = cache_key("summary", normalize_content(content))

        cached = await self._read_cache(key)
        if cached is not None:
            return cached

        if not content.strip():
            result = fallback_summary(content, self._elapsed_ms(started))
            result.cache_key = key
            return result

        limit = await self.rate_limiter.check("global", self.rate_limit)
        if not limit.allowed:
            raise RateLimited(limit.retry_after)

        outcome = await self.capability.summarize(
            title=title,
            content=prepare_content(content),
            max_tokens=options.max_tokens,
            temperature=options.temperature,
        )
        elapsed = self._elapsed_ms(started)

        if not outcome.ok:
            logger.warning(
                f"Using fallback summary: {outcome.error}",
                extra={"title": title, "error": outcome.error, "processing_time_ms": elapsed},
            )
            result = fallback_summary(content, elapsed)
            result.cache_key = key
            return result

        draft = outcome.draft
        result = SummaryResult(
            content=draft.content,
            key_points=draft.key_points,
            sentiment=normalize_sentiment(draft.sentiment),
            categories=draft.categories,
            confidence=DEFAULT_CONFIDENCE,
            model=draft.model,
            tokens=draft.input_tokens + draft.output_tokens,
            processing_time_ms=elapsed,
            cost=draft.cost,
            cache_key=key,
        )
        logger.info(
            "AI summary generated successfully",
            extra={
                "title": title,
                "model": result.model,
                "tokens": result.tokens,
                "cost": result.cost,
                "processing_time_ms": elapsed,
            },
        )

        await self._write_cache(key, result)
        return result

    async def summarize_batch(
        self,
        articles: list[ArticleInput],
        options: SummarizeOptions | None = None,
    ) -> dict[int | str, SummaryResult]:
        """
        Summarize articles in chunks of batch_size.

        Articles whose summarization raised (for example RateLimited) are
        logged and left out of the result.
        """
        results: dict[int | str, SummaryResult] = {}

        for start in range(0, len(articles), self.batch_size):
            chunk = articles[start:start + self.batch_size]
            outcomes = await asyncio.gather(
                *(
                    self.summarize(article.content or article.description or "", article.title, options)
                    for article in chunk
                ),
                return_exceptions=True,
            )

            for article, outcome in zip(chunk, outcomes):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                if isinstance(outcome, BaseException):
                    logger.error(
                        f"Batch summarization failed for article {article.id}: {outcome}",
                        extra={"article_id": article.id, "error": str(outcome)},
                    )
                    continue
                results[article.id] = outcome

            if start + self.batch_size < len(articles):
                await asyncio.sleep(self.batch_delay)

        return results

    async def _read_cache(self, key: str) -> SummaryResult | None:
        try:
            raw = await self.cache.get(key)
        except Exception as e:
            logger.warning(f"Summary cache read failed: {e}", extra={"cache_key": key, "error": str(e)})
            return None

        if raw is None:
            logger.debug("Summary cache miss", extra={"cache_key": key})
            return None

        try:
            result = SummaryResult.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding unreadable cached summary: {e}", extra={"cache_key": key})
            return None

        logger.info("Summary cache hit", extra={"cache_key": key})
        result.cached = True
        result.cache_key = key
        return result

    async def _write_cache(self, key: str, result: SummaryResult) -> None:
        try:
            await self.cache.set(key, json.dumps(result.to_dict()), self.cache_ttl or None)
        except Exception as e:
            logger.warning(f"Summary cache write failed: {e}", extra={"cache_key": key, "error": str(e)})

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)
