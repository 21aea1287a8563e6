"""
Feed Pipeline

Background pipeline for RSS/Atom ingestion and AI summarization.
Provides feed fetching, caching, rate limiting, and a job queue with workers.
"""

__version__ = "1.0.0"
