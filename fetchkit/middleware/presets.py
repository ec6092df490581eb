"""
Ready-made middleware stacks.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from .cache import CacheOptions, create_cache_middleware
from .logging import create_logging_middleware
from .rate_limit import RateLimitOptions, create_rate_limit_middleware
from .retry import RetryOptions, create_retry_middleware

if TYPE_CHECKING:
    from ..clients.http import FetchClient


def add_production_stack(
    client: FetchClient,
    *,
    logging: Mapping[str, Any] | bool = True,
    cache: CacheOptions | bool = True,
    retry: RetryOptions | bool = True,
    rate_limit: RateLimitOptions | bool = True,
) -> FetchClient:
    """
    Register logging, cache, retry and rate limiting, outermost first.

    Retry sits outside the rate limiter, so every retry attempt is charged a
    token. Pass `False` to leave a stage out, `True` for its defaults, or an
    options object (keyword mapping for logging) to configure it.
    """
    if logging is not False:
        client.use(create_logging_middleware(**({} if logging is True else dict(logging))))
    if cache is not False:
        client.use(create_cache_middleware(None if cache is True else cache))
    if retry is not False:
        client.use(create_retry_middleware(None if retry is True else retry))
    if rate_limit is not False:
        client.use(create_rate_limit_middleware(None if rate_limit is True else rate_limit))
    return client
