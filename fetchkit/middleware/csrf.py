"""
CSRF token middleware.

Servers using the double-submit pattern hand out a token (in a cookie or a
response header) and expect it back in a request header on state-changing
calls. `CSRFTokenStore` holds the current token; the middleware injects it and
picks up refreshed tokens from responses.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable

import httpx

from ..clients.pipeline import FetchRequest, FetchResponse, Middleware, Next

DEFAULT_COOKIE_NAME = "XSRF-TOKEN"
DEFAULT_HEADER_NAME = "X-XSRF-TOKEN"
UNSAFE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


class CSRFTokenStore:
    def __init__(self, token: str | None = None) -> None:
        self._token = token
        self._lock = threading.Lock()

    @classmethod
    def from_cookies(
        cls, cookies: httpx.Cookies, cookie_name: str = DEFAULT_COOKIE_NAME
    ) -> CSRFTokenStore:
        return cls(cookies.get(cookie_name))

    @property
    def token(self) -> str | None:
        with self._lock:
            return self._token

    def set(self, token: str | None) -> None:
        with self._lock:
            self._token = token

    def clear(self) -> None:
        self.set(None)


def create_csrf_middleware(
    store: CSRFTokenStore,
    *,
    header_name: str = DEFAULT_HEADER_NAME,
    methods: Iterable[str] = UNSAFE_METHODS,
) -> Middleware:
    """
    Inject `store.token` as `header_name` on requests whose method is in
    `methods`, and store any token the server returns in the same header.
    """
    guarded = frozenset(m.upper() for m in methods)

    async def csrf_middleware(req: FetchRequest, next: Next) -> FetchResponse:
        token = store.token
        if token and req.method in guarded:
            req = req.copy()
            req.headers[header_name] = token

        response = await next(req)
        refreshed = response.headers.get(header_name)
        if refreshed:
            store.set(refreshed)
        return response

    return csrf_middleware
