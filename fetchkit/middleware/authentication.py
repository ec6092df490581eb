"""
Authentication middleware: attaches a token from a (possibly async) provider to
every matching request.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable, Sequence

from ..clients.pipeline import FetchRequest, FetchResponse, Middleware, Next, ResponseError
from ._patterns import UrlPattern, matches_any, url_path

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], "str | None | Awaitable[str | None]"]


def _unauthorized(url: str, message: str) -> FetchResponse:
    return FetchResponse(
        status=401,
        status_text="Unauthorized",
        url=url,
        error=ResponseError(message),
    )


def create_authentication_middleware(
    token_provider: TokenProvider,
    *,
    header_name: str = "Authorization",
    token_type: str = "Bearer",
    skip_patterns: Sequence[UrlPattern] = (),
    include_patterns: Sequence[UrlPattern] | None = None,
    require_token: bool = False,
) -> Middleware:
    """
    Create an authentication middleware.

    Patterns are matched against the URL path. A request is authenticated when
    it matches no skip pattern and, if include patterns are given, at least one
    of them.

    The provider is called once per pass through the middleware, so behind a
    retry middleware every attempt gets a freshly provided token.

    When the provider returns nothing or raises, the request is sent without
    credentials; with `require_token=True` a synthetic 401 response is returned
    instead and the request never reaches the network.
    """

    async def authentication_middleware(req: FetchRequest, next: Next) -> FetchResponse:
        path = url_path(req.url)
        if matches_any(path, skip_patterns):
            return await next(req)
        if include_patterns and not matches_any(path, include_patterns):
            return await next(req)

        try:
            token = token_provider()
            if inspect.isawaitable(token):
                token = await token
        except Exception as e:
            logger.warning(f"Token provider failed for {req.method} {req.url}: {e}")
            if require_token:
                return _unauthorized(
                    req.url, str(e) or "Authentication failed (token provider error)"
                )
            return await next(req)

        if not token:
            if require_token:
                return _unauthorized(req.url, "Authentication required (no token provided)")
            return await next(req)

        authed = req.copy()
        authed.headers[header_name] = f"{token_type} {token}" if token_type else str(token)
        return await next(authed)

    return authentication_middleware
