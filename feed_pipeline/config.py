"""
Configuration and logging setup.
"""

import json
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse boolean from environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


class Config:
    """Application configuration from environment."""
    # LLM Provider configuration
    ANTHROPIC_API_KEY: str = os.getenv("ANTHROPIC_API_KEY", "")
    OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")

    # Preferred provider: "anthropic" or "openai"
    # If not set, uses the first available key in order: Anthropic > OpenAI
    LLM_PROVIDER: str = os.getenv("LLM_PROVIDER", "")
    LLM_MODEL: str = os.getenv("LLM_MODEL", "")
    LLM_MAX_TOKENS: int = int(os.getenv("LLM_MAX_TOKENS", "500"))
    LLM_TEMPERATURE: float = float(os.getenv("LLM_TEMPERATURE", "0.3"))

    DB_PATH: Path = Path(os.getenv("DB_PATH", "./data/pipeline.db"))
    # Empty means in-process cache
    REDIS_URL: str = os.getenv("REDIS_URL", "")
    PORT: int = int(os.getenv("PORT", "4000"))
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT: str = os.getenv("LOG_FORMAT", "text")  # "text" or "json"

    # Feed fetching
    FEED_USER_AGENT: str = os.getenv("FEED_USER_AGENT", "FeedPipeline/1.0")
    FEED_TIMEOUT: float = float(os.getenv("FEED_TIMEOUT", "30"))  # seconds, per attempt
    FEED_MAX_RETRIES: int = int(os.getenv("FEED_MAX_RETRIES", "3"))
    FEED_RETRY_DELAY: float = float(os.getenv("FEED_RETRY_DELAY", "2"))  # seconds
    FEED_CACHE_TTL: int = int(os.getenv("FEED_CACHE_TTL", "1800"))

    # Jobs
    JOB_CONCURRENCY: int = int(os.getenv("JOB_CONCURRENCY", "5"))
    AUTO_SUMMARIZE: bool = _parse_bool(os.getenv("AUTO_SUMMARIZE"), default=False)

    # API rate limit (per client)
    RATE_LIMIT_MAX: int = int(os.getenv("RATE_LIMIT_MAX", "100"))
    RATE_LIMIT_WINDOW_MS: int = int(os.getenv("RATE_LIMIT_WINDOW_MS", "60000"))

    # Summarizer budget (global)
    SUMMARIZER_RATE_LIMIT: int = int(os.getenv("SUMMARIZER_RATE_LIMIT", "100"))
    SUMMARIZER_RATE_WINDOW_MS: int = int(os.getenv("SUMMARIZER_RATE_WINDOW_MS", "3600000"))
    SUMMARY_CACHE_TTL: int = int(os.getenv("SUMMARY_CACHE_TTL", "0"))  # 0 = never expire
    SUMMARY_BATCH_SIZE: int = int(os.getenv("SUMMARY_BATCH_SIZE", "3"))
    SUMMARY_BATCH_DELAY: float = float(os.getenv("SUMMARY_BATCH_DELAY", "1"))

    # Cron schedules
    CRON_FEED_REFRESH: str = os.getenv("CRON_FEED_REFRESH", "*/30 * * * *")
    CRON_CACHE_CLEANUP: str = os.getenv("CRON_CACHE_CLEANUP", "0 2 * * *")
    CRON_TIMEZONE: str = os.getenv("CRON_TIMEZONE", "UTC")


config = Config()


# Attributes present on every LogRecord; anything else came in through `extra=`
_RESERVED_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


def _extra_fields(record: logging.LogRecord) -> dict:
    return {k: v for k, v in record.__dict__.items() if k not in _RESERVED_ATTRS}


class KeyValueFormatter(logging.Formatter):
    """Human-readable lines with trailing key=value fields."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = _extra_fields(record)
        if fields:
            line += " " + " ".join(f"{k}={v}" for k, v in fields.items())
        return line


class JsonFormatter(logging.Formatter):
    """One JSON object per line for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
            **_extra_fields(record),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(level: str = "INFO", fmt: str = "text") -> None:
    """Configure the feed_pipeline logger hierarchy."""
    handler = logging.StreamHandler(sys.stdout)
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(KeyValueFormatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))

    root = logging.getLogger("feed_pipeline")
    root.handlers = [handler]
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.propagate = False
