"""
Retry middleware.

Re-sends a request through the rest of the chain when the response (or a raised
transport error) is considered retryable, waiting between attempts according
to a bounded backoff schedule.

Retries re-enter the *whole* downstream chain, not just the transport call, so
per-attempt work done by inner middleware (fresh auth headers, rate limit
charges, logging) happens once per attempt.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

from pydantic import Field

from ..clients.pipeline import FetchRequest, FetchResponse, Middleware, Next, ResponseError
from ..exceptions import RateLimitExceededError
from ._options import MiddlewareOptions, resolve_options

if TYPE_CHECKING:
    from ..clients.http import FetchClient

logger = logging.getLogger(__name__)

Backoff = Literal["exponential", "linear", "fixed"]
Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class RetrySummary:
    """What `on_retry` is told about the failed attempt."""

    status: int
    status_text: str


def default_should_retry(response: FetchResponse, attempt: int) -> bool:
    """Retry network errors (status 0) and server errors (5xx)."""
    return response.status == 0 or 500 <= response.status < 600


def calculate_delay(attempt: int, base_delay: float, backoff: Backoff, max_delay: float) -> float:
    """
    Delay in milliseconds before the `attempt`-th retry (1-based).

    exponential: base * 2^(attempt-1); linear: base * attempt; fixed: base.
    Always capped at `max_delay`.
    """
    if backoff == "exponential":
        # 2.0 ** 1024 raises; a product past float range becomes inf and is capped
        delay = base_delay * 2.0 ** min(attempt - 1, 1023)
    elif backoff == "linear":
        delay = base_delay * attempt
    else:
        delay = base_delay
    return min(delay, max_delay)


class RetryOptions(MiddlewareOptions):
    """
    Retry configuration. Defaults give 3 retries (4 attempts in total) with
    exponential backoff starting at 1s, retrying only network and 5xx errors.

    Attributes:
        max_retries: Retries after the first attempt
        delay: Base delay in milliseconds
        backoff: "exponential", "linear" or "fixed"
        max_delay: Upper bound for any single delay, in milliseconds
        should_retry: `(response, attempt) -> bool`; attempt is 1-based
        on_retry: `(attempt, delay_ms, RetrySummary)` called before each wait.
            May be a coroutine function. Exceptions propagate to the caller.
    """

    max_retries: int = Field(3, ge=0)
    delay: float = Field(1000, ge=0)
    backoff: Backoff = "exponential"
    max_delay: float = Field(30000, ge=0)
    should_retry: Callable[[FetchResponse, int], bool] = default_should_retry
    on_retry: Callable[[int, float, RetrySummary], Any] | None = None


def _network_error_response(req: FetchRequest, error: Exception) -> FetchResponse:
    return FetchResponse(
        status=0,
        status_text="Network Error",
        url=req.url,
        error=ResponseError(str(error) or type(error).__name__, error),
    )


def create_retry_middleware(
    options: RetryOptions | None = None,
    *,
    sleep: Sleep | None = None,
    **overrides: Any,
) -> Middleware:
    """
    Create a retry middleware.

    Args:
        options: Retry configuration; keyword overrides are applied on top
        sleep: Awaitable sleep taking seconds (defaults to `asyncio.sleep`)

    Returns:
        A middleware. When retries are exhausted the last failed response is
        returned, never raised; a raised transport error is returned as a
        synthetic status-0 "Network Error" response. `RateLimitExceededError`
        is not a transport failure and propagates untouched.

    Raises:
        ConfigurationError: If the options are invalid.
    """
    opts = resolve_options(RetryOptions, options, overrides)
    wait: Sleep = sleep or asyncio.sleep

    async def retry_middleware(req: FetchRequest, next: Next) -> FetchResponse:
        attempt = 0
        while True:
            attempt_req = req.copy()
            attempt_req.context["attempt"] = attempt + 1
            try:
                response = await next(attempt_req)
            except RateLimitExceededError:
                raise
            except Exception as e:
                response = _network_error_response(req, e)
            else:
                if response.ok:
                    return response

            if not opts.should_retry(response, attempt + 1) or attempt >= opts.max_retries:
                return response

            attempt += 1
            delay = calculate_delay(attempt, opts.delay, opts.backoff, opts.max_delay)
            logger.debug(
                f"Retrying {req.method} {req.url} after status {response.status} "
                f"(retry {attempt}/{opts.max_retries}, waiting {delay:g}ms)"
            )
            if opts.on_retry is not None:
                result = opts.on_retry(
                    attempt, delay, RetrySummary(response.status, response.status_text)
                )
                if inspect.isawaitable(result):
                    await result
            await wait(delay / 1000)

    return retry_middleware


def create_exponential_retry(max_retries: int = 3, base_delay: float = 1000) -> Middleware:
    return create_retry_middleware(max_retries=max_retries, delay=base_delay, backoff="exponential")


def _server_errors_only(response: FetchResponse, attempt: int) -> bool:
    return response.status >= 500


def create_server_error_retry(max_retries: int = 3) -> Middleware:
    """Retry 5xx responses only; network errors are returned immediately."""
    return create_retry_middleware(max_retries=max_retries, should_retry=_server_errors_only)


def add_retry(
    client: FetchClient, options: RetryOptions | None = None, **overrides: Any
) -> FetchClient:
    return client.use(create_retry_middleware(options, **overrides))
