"""tradeboard.ingestion — Provider failover, rate limits, freshness, quotes."""

from tradeboard.ingestion.freshness import age_of, format_age, is_fresh
from tradeboard.ingestion.orchestrator import (
    FetchResult,
    IngestionOrchestrator,
    RefreshReport,
    classify_price_data,
)
from tradeboard.ingestion.quotes import QuoteCache
from tradeboard.ingestion.ratelimit import RateLimiter, RateWindow

__all__ = [
    "IngestionOrchestrator",
    "FetchResult",
    "RefreshReport",
    "classify_price_data",
    "QuoteCache",
    "RateLimiter",
    "RateWindow",
    "is_fresh",
    "age_of",
    "format_age",
]
