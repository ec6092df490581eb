"""
Exception hierarchy for fetchkit.

Every error raised by the client or its middleware derives from `FetchError`,
so callers can catch the whole family with a single `except` clause.
"""

from __future__ import annotations

from typing import Any


class FetchError(Exception):
    """Base class for all fetchkit errors."""

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        return self.message


class ConfigurationError(FetchError):
    """Invalid client or middleware configuration."""


class InvalidURLError(FetchError):
    """A request URL could not be resolved against the client's base URL."""

    def __init__(self, url: str, base_url: str | None = None) -> None:
        super().__init__(f'Invalid URL: Unable to resolve "{url}" with baseUrl "{base_url}"')
        self.url = url
        self.base_url = base_url


class HttpError(FetchError):
    """A request completed with a non-2xx status code."""

    def __init__(self, status: int, status_text: str, body: Any, url: str) -> None:
        super().__init__(f"HTTP {status} {status_text} at {url}")
        self.status = status
        self.status_text = status_text
        self.body = body
        self.url = url


class NetworkError(FetchError):
    """The transport failed before a response was received."""

    def __init__(self, message: str, url: str, *, cause: BaseException | None = None) -> None:
        super().__init__(f"Network error for {url}: {message}", cause=cause)
        self.url = url


class RequestTimeoutError(NetworkError):
    """The transport gave up waiting for a response."""


class RateLimitExceededError(FetchError):
    """
    Raised by the rate limit middleware when a bucket has no tokens left.

    `retry_after_ms` is the number of milliseconds until one token is available.
    """

    def __init__(self, retry_after_ms: int, *, key: str | None = None) -> None:
        super().__init__(f"Rate limit exceeded. Retry after {retry_after_ms}ms")
        self.retry_after_ms = retry_after_ms
        self.key = key
