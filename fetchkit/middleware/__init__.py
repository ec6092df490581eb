"""
Built-in middleware.

Every middleware follows the same contract: an async callable taking
`(request, next)` that returns a `FetchResponse`.
"""

from __future__ import annotations

from .authentication import create_authentication_middleware
from .authorization import create_authorization_middleware
from .cache import CacheEntry, CacheOptions, CacheStorage, MemoryStorage, create_cache_middleware
from .csrf import CSRFTokenStore, create_csrf_middleware
from .logging import LogEntry, create_logging_middleware
from .presets import add_production_stack
from .rate_limit import (
    ConsumeResult,
    RateLimiter,
    RateLimitOptions,
    TokenBucket,
    add_rate_limit,
    create_rate_limit_middleware,
    path_key,
    too_many_requests,
)
from .retry import (
    RetryOptions,
    RetrySummary,
    add_retry,
    calculate_delay,
    create_exponential_retry,
    create_retry_middleware,
    create_server_error_retry,
    default_should_retry,
)

__all__ = [
    # Core stages
    "RetryOptions",
    "RetrySummary",
    "add_retry",
    "calculate_delay",
    "create_exponential_retry",
    "create_retry_middleware",
    "create_server_error_retry",
    "default_should_retry",
    "ConsumeResult",
    "RateLimitOptions",
    "RateLimiter",
    "TokenBucket",
    "add_rate_limit",
    "create_rate_limit_middleware",
    "path_key",
    "too_many_requests",
    # Collaborators
    "create_authentication_middleware",
    "create_authorization_middleware",
    "CSRFTokenStore",
    "create_csrf_middleware",
    "CacheEntry",
    "CacheOptions",
    "CacheStorage",
    "MemoryStorage",
    "create_cache_middleware",
    "LogEntry",
    "create_logging_middleware",
    # Presets
    "add_production_stack",
]
