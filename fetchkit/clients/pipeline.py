"""
Request pipeline primitives.

Requests and responses are modelled independently of the underlying HTTP
transport so cross-cutting behavior (auth, retries, rate limiting, caching,
logging) can be implemented as middleware wrapped around a terminal call.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeAlias, TypedDict, cast

import httpx

from ..exceptions import HttpError


class RequestContext(TypedDict, total=False):
    attempt: int
    cache_key: str
    rate_limit_key: str


@dataclass(slots=True)
class FetchRequest:
    """
    An outgoing call as seen by middleware.

    Stages may rewrite a request before handing it to `next`; use `copy()` when
    the change must not leak back to the caller or to a later retry attempt.
    """

    method: str
    url: str
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    body: Any | None = None
    params: Sequence[tuple[str, str]] | None = None
    timeout: float | None = None
    context: RequestContext = field(default_factory=lambda: cast(RequestContext, {}))

    def __post_init__(self) -> None:
        self.method = (self.method or "GET").upper()
        if not isinstance(self.headers, httpx.Headers):
            self.headers = httpx.Headers(self.headers)

    def copy(self, **changes: Any) -> FetchRequest:
        changes.setdefault("headers", httpx.Headers(self.headers))
        changes.setdefault("context", cast(RequestContext, dict(self.context)))
        return dataclasses.replace(self, **changes)


@dataclass(frozen=True, slots=True)
class ResponseError:
    message: str
    body: Any | None = None


@dataclass(frozen=True, slots=True)
class FetchResponse:
    """
    Outcome of a call.

    `status` 0 is reserved for "no response from the network": transport
    failures and synthetic responses produced by middleware.
    """

    status: int
    status_text: str = ""
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    data: Any | None = None
    url: str = ""
    error: ResponseError | None = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def replace(self, **changes: Any) -> FetchResponse:
        return dataclasses.replace(self, **changes)

    def raise_for_status(self) -> FetchResponse:
        """Raise `HttpError` unless the response is successful; returns self otherwise."""
        if not self.ok:
            body = self.error.body if self.error is not None else self.data
            raise HttpError(self.status, self.status_text, body, self.url)
        return self


Next: TypeAlias = Callable[[FetchRequest], Awaitable[FetchResponse]]


class Middleware(Protocol):
    async def __call__(self, req: FetchRequest, next: Next) -> FetchResponse: ...


def compose(middlewares: Sequence[Middleware], terminal: Next) -> Next:
    """
    Fold `middlewares` around `terminal`.

    The first middleware ends up outermost and the last one wraps the terminal
    call directly.
    """
    pipeline = terminal
    for middleware in reversed(middlewares):
        next_pipeline = pipeline

        async def _wrapped(
            req: FetchRequest,
            *,
            _mw: Middleware = middleware,
            _n: Next = next_pipeline,
        ) -> FetchResponse:
            return await _mw(req, _n)

        pipeline = _wrapped
    return pipeline
