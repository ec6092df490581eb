"""
fetchkit: an async HTTP client with a composable middleware pipeline.

Example:
    ```python
    from fetchkit import ClientConfig, FetchClient
    from fetchkit.middleware import create_rate_limit_middleware, create_retry_middleware

    async with FetchClient(ClientConfig(base_url="https://api.example.com")) as client:
        client.use(create_retry_middleware(max_retries=2))
        client.use(create_rate_limit_middleware(max_requests=10, window_ms=1000))
        users = await client.get("/users")
    ```
"""

from __future__ import annotations

from .clients.http import ClientConfig, FetchClient, HeadMetadata
from .clients.pipeline import (
    FetchRequest,
    FetchResponse,
    Middleware,
    Next,
    ResponseError,
    compose,
)
from .exceptions import (
    ConfigurationError,
    FetchError,
    HttpError,
    InvalidURLError,
    NetworkError,
    RateLimitExceededError,
    RequestTimeoutError,
)

__version__ = "0.3.0"

__all__ = [
    "__version__",
    # Client
    "ClientConfig",
    "FetchClient",
    "HeadMetadata",
    # Pipeline
    "FetchRequest",
    "FetchResponse",
    "Middleware",
    "Next",
    "ResponseError",
    "compose",
    # Errors
    "ConfigurationError",
    "FetchError",
    "HttpError",
    "InvalidURLError",
    "NetworkError",
    "RateLimitExceededError",
    "RequestTimeoutError",
]
