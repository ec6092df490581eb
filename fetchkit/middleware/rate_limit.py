"""
Client-side rate limiting with token buckets.

Each rate limit key owns a bucket holding up to `max_requests` tokens that
refills continuously at `max_requests / window_ms` tokens per millisecond.
Refill is computed lazily when a request is checked; there is no background
timer and no fixed-window reset.

Buckets are created on first use and, unless `max_keys` is set, never evicted.
With an unbounded key space (e.g. one key per URL) the bucket map grows for the
lifetime of the middleware.
"""

from __future__ import annotations

import inspect
import logging
import math
import threading
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import Field

from ..clients.pipeline import FetchRequest, FetchResponse, Next, ResponseError
from ..exceptions import RateLimitExceededError
from ._clock import Clock, monotonic_ms
from ._options import MiddlewareOptions, resolve_options
from ._patterns import UrlPattern, matches_any, url_path

if TYPE_CHECKING:
    from ..clients.http import FetchClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ConsumeResult:
    allowed: bool
    retry_after_ms: int = 0


@dataclass(slots=True)
class TokenBucket:
    """
    Continuously refilling token counter.

    Invariant: 0 <= tokens <= capacity. A denied consume leaves `tokens`
    untouched apart from the refill.
    """

    capacity: float
    refill_rate_per_ms: float
    tokens: float
    last_refill: float

    @classmethod
    def full(cls, capacity: float, refill_rate_per_ms: float, now: float) -> TokenBucket:
        return cls(capacity, refill_rate_per_ms, float(capacity), now)

    def refill(self, now: float) -> None:
        elapsed = max(0.0, now - self.last_refill)
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate_per_ms)
        self.last_refill = max(self.last_refill, now)

    def try_consume(self, now: float) -> ConsumeResult:
        self.refill(now)
        if self.tokens >= 1:
            self.tokens -= 1
            return ConsumeResult(True)
        retry_after = math.ceil((1 - self.tokens) / self.refill_rate_per_ms)
        return ConsumeResult(False, retry_after)


def default_key(req: FetchRequest) -> str:
    """Single global bucket."""
    return "default"


def path_key(req: FetchRequest) -> str:
    """One bucket per URL path."""
    return url_path(req.url)


class RateLimitOptions(MiddlewareOptions):
    """
    Rate limit configuration (60 requests per minute, one global bucket by default).

    Attributes:
        max_requests: Bucket capacity (burst size)
        window_ms: Time for an empty bucket to refill completely
        key_generator: Maps a request to its bucket key
        skip_patterns: URL substrings / compiled regexes that bypass the limiter
            entirely (neither checked nor charged)
        on_rate_limit_exceeded: `(retry_after_ms, request)`; returning a response
            short-circuits the chain, returning None forwards the request anyway.
            May be a coroutine function. Exceptions propagate to the caller.
        max_keys: Optional bound on the number of buckets; least recently used
            keys are dropped (and start full if seen again)
    """

    max_requests: int = Field(60, gt=0)
    window_ms: float = Field(60000, gt=0)
    key_generator: Callable[[FetchRequest], str] = default_key
    skip_patterns: tuple[UrlPattern, ...] = ()
    on_rate_limit_exceeded: Callable[[int, FetchRequest], Any] | None = None
    max_keys: int | None = Field(None, gt=0)


class RateLimiter:
    """
    Token bucket rate limit middleware.

    Instances are callable as middleware. Refill-and-consume for a key runs
    under a lock with no suspension point, so concurrent callers (tasks or
    threads) can never both take the last token.
    """

    def __init__(
        self,
        options: RateLimitOptions | None = None,
        *,
        clock: Clock | None = None,
        **overrides: Any,
    ) -> None:
        self.options = resolve_options(RateLimitOptions, options, overrides)
        self._clock = clock or monotonic_ms
        self._refill_rate = self.options.max_requests / self.options.window_ms
        self._buckets: OrderedDict[str, TokenBucket] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._buckets)

    def bucket(self, key: str) -> TokenBucket | None:
        """The bucket for `key`, as of its last evaluation."""
        return self._buckets.get(key)

    def acquire(self, key: str) -> ConsumeResult:
        with self._lock:
            now = self._clock()
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = TokenBucket.full(self.options.max_requests, self._refill_rate, now)
                self._buckets[key] = bucket
                max_keys = self.options.max_keys
                if max_keys is not None:
                    while len(self._buckets) > max_keys:
                        evicted, _ = self._buckets.popitem(last=False)
                        logger.debug(f"Evicted rate limit bucket {evicted!r}")
            elif self.options.max_keys is not None:
                self._buckets.move_to_end(key)
            return bucket.try_consume(now)

    async def __call__(self, req: FetchRequest, next: Next) -> FetchResponse:
        if matches_any(req.url, self.options.skip_patterns):
            return await next(req)

        key = self.options.key_generator(req)
        req = req.copy()
        req.context["rate_limit_key"] = key
        result = self.acquire(key)
        if result.allowed:
            return await next(req)

        logger.warning(
            f"Rate limit exceeded for key {key!r} ({req.method} {req.url}); "
            f"retry after {result.retry_after_ms}ms"
        )
        handler = self.options.on_rate_limit_exceeded
        if handler is None:
            raise RateLimitExceededError(result.retry_after_ms, key=key)

        handled = handler(result.retry_after_ms, req)
        if inspect.isawaitable(handled):
            handled = await handled
        if handled is not None:
            return handled
        return await next(req)


def too_many_requests(retry_after_ms: int, req: FetchRequest) -> FetchResponse:
    """
    Build a 429 response with a `Retry-After` header in whole seconds.

    Pass as `on_rate_limit_exceeded` to get responses instead of
    `RateLimitExceededError`.
    """
    retry_after_s = math.ceil(retry_after_ms / 1000)
    return FetchResponse(
        status=429,
        status_text="Too Many Requests",
        headers=httpx.Headers({"Retry-After": str(retry_after_s)}),
        url=req.url,
        error=ResponseError(
            f"Rate limit exceeded. Retry after {retry_after_ms}ms",
            {"retry_after_ms": retry_after_ms},
        ),
    )


def create_rate_limit_middleware(
    options: RateLimitOptions | None = None,
    *,
    clock: Clock | None = None,
    **overrides: Any,
) -> RateLimiter:
    """
    Create a token bucket rate limit middleware.

    Raises:
        ConfigurationError: If the options are invalid.
    """
    return RateLimiter(options, clock=clock, **overrides)


def add_rate_limit(
    client: FetchClient, options: RateLimitOptions | None = None, **overrides: Any
) -> FetchClient:
    return client.use(create_rate_limit_middleware(options, **overrides))
