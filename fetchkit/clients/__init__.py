from __future__ import annotations

from .http import ClientConfig, FetchClient, HeadMetadata
from .pipeline import FetchRequest, FetchResponse, Middleware, Next, ResponseError, compose

__all__ = [
    "ClientConfig",
    "FetchClient",
    "HeadMetadata",
    "FetchRequest",
    "FetchResponse",
    "Middleware",
    "Next",
    "ResponseError",
    "compose",
]
