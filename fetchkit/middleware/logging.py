"""
Request/response logging middleware.

Emits one DEBUG record when a request starts, then one INFO record for the
response (ERROR for status >= 400) or one ERROR record if the call raised.
Each record carries the structured `LogEntry` as `extra={"fetch": entry}`.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Literal

from ..clients.pipeline import FetchRequest, FetchResponse, Middleware, Next
from ._patterns import UrlPattern, matches_any

LogLevel = Literal["debug", "info", "warning", "error"]

_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

default_logger = logging.getLogger("fetchkit.http")


@dataclass(slots=True)
class LogEntry:
    level: LogLevel
    timestamp: float
    method: str
    url: str
    status: int | None = None
    duration_ms: float | None = None
    request_headers: dict[str, str] | None = None
    response_headers: dict[str, str] | None = None
    request_body: Any | None = None
    response_body: Any | None = None
    error: BaseException | None = None


def default_formatter(entry: LogEntry) -> str:
    message = f"{entry.method} {entry.url}"
    if entry.status is not None:
        message += f" -> {entry.status}"
    if entry.duration_ms is not None:
        message += f" ({entry.duration_ms:.0f}ms)"
    return message


def create_logging_middleware(
    *,
    logger: logging.Logger | None = None,
    level: LogLevel = "info",
    include_request_headers: bool = False,
    include_response_headers: bool = False,
    include_request_body: bool = False,
    include_response_body: bool = False,
    skip_patterns: Sequence[UrlPattern] = (),
    formatter: Callable[[LogEntry], str] = default_formatter,
) -> Middleware:
    """
    Create a logging middleware.

    Args:
        logger: Target logger (default: `fetchkit.http`)
        level: Minimum level this middleware emits, independent of the
            logger's own level
        include_*: Attach headers/bodies to the structured entry
        skip_patterns: URLs that are not logged
        formatter: Renders the message text for an entry
    """
    log = logger or default_logger
    min_level = _LEVELS[level]

    def emit(entry: LogEntry, prefix: str) -> None:
        lvl = _LEVELS[entry.level]
        if lvl >= min_level:
            log.log(lvl, f"{prefix} {formatter(entry)}", extra={"fetch": entry})

    async def logging_middleware(req: FetchRequest, next: Next) -> FetchResponse:
        if matches_any(req.url, skip_patterns):
            return await next(req)

        started = time.perf_counter()
        emit(
            LogEntry(
                level="debug",
                timestamp=time.time(),
                method=req.method,
                url=req.url,
                request_headers=dict(req.headers.items()) if include_request_headers else None,
                request_body=req.body if include_request_body else None,
            ),
            "->",
        )

        try:
            response = await next(req)
        except Exception as e:
            emit(
                LogEntry(
                    level="error",
                    timestamp=time.time(),
                    method=req.method,
                    url=req.url,
                    duration_ms=(time.perf_counter() - started) * 1000,
                    error=e,
                ),
                "!!",
            )
            raise

        emit(
            LogEntry(
                level="error" if response.status >= 400 else "info",
                timestamp=time.time(),
                method=req.method,
                url=req.url,
                status=response.status,
                duration_ms=(time.perf_counter() - started) * 1000,
                response_headers=(
                    dict(response.headers.items()) if include_response_headers else None
                ),
                response_body=response.data if include_response_body else None,
            ),
            "<-",
        )
        return response

    return logging_middleware
