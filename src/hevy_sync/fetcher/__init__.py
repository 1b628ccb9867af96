"""Guarded HTTP access to the Hevy API: breaker, retries, rate limits, pagination."""

from .batch_fetcher import BatchFetcher
from .circuit_breaker import CircuitBreaker
from .pagination import PaginationOrchestrator
from .rate_limiter import RateLimitTracker
from .request_executor import RequestExecutor
from .retry_handler import RetryPolicy

__all__ = [
    "BatchFetcher",
    "CircuitBreaker",
    "PaginationOrchestrator",
    "RateLimitTracker",
    "RequestExecutor",
    "RetryPolicy",
]
