"""
Authorization middleware: reacts to 401/403 responses.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable, Sequence
from typing import Any

from ..clients.pipeline import FetchRequest, FetchResponse, Middleware, Next
from ._patterns import UrlPattern, matches_any, url_path

logger = logging.getLogger(__name__)

StatusHandler = Callable[[FetchResponse, FetchRequest], Any]


def create_authorization_middleware(
    on_unauthorized: StatusHandler | None = None,
    on_forbidden: StatusHandler | None = None,
    *,
    status_codes: Sequence[int] = (401,),
    skip_patterns: Sequence[UrlPattern] = (),
) -> Middleware:
    """
    Call a handler when a response carries one of `status_codes`.

    401 goes to `on_unauthorized`, 403 to `on_forbidden`; any other configured
    status falls back to `on_unauthorized`. Handlers may be coroutine functions.
    A failing handler is logged and the response is returned unchanged.
    """

    async def authorization_middleware(req: FetchRequest, next: Next) -> FetchResponse:
        if matches_any(url_path(req.url), skip_patterns):
            return await next(req)

        response = await next(req)
        if response.status not in status_codes:
            return response

        handler = on_unauthorized
        if response.status == 403 and on_forbidden is not None:
            handler = on_forbidden
        if handler is None:
            return response

        try:
            result = handler(response, req)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.warning(
                f"Authorization handler failed for {req.method} {req.url}", exc_info=True
            )
        return response

    return authorization_middleware
