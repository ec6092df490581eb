"""
Response cache middleware.

Successful responses to cacheable methods are stored under a key derived from
the request and served from the cache until they expire. Storage is pluggable;
`MemoryStorage` keeps entries in a dict with lazy TTL expiry.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pydantic import Field

from ..clients.pipeline import FetchRequest, FetchResponse, Middleware, Next
from ._clock import Clock, monotonic_ms
from ._options import MiddlewareOptions, resolve_options
from ._patterns import UrlPattern, matches_any

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CacheEntry:
    response: FetchResponse
    stored_at: float
    expires_at: float


class CacheStorage(ABC):
    @abstractmethod
    async def get(self, key: str) -> CacheEntry | None: ...

    @abstractmethod
    async def set(self, key: str, entry: CacheEntry) -> None: ...

    @abstractmethod
    async def delete(self, key: str) -> None: ...

    @abstractmethod
    async def clear(self) -> None: ...


class MemoryStorage(CacheStorage):
    """In-process storage; expired entries are dropped when read."""

    def __init__(self, *, clock: Clock | None = None) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._clock = clock or monotonic_ms

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() > entry.expires_at:
            del self._entries[key]
            return None
        return entry

    async def set(self, key: str, entry: CacheEntry) -> None:
        self._entries[key] = entry

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def clear(self) -> None:
        self._entries.clear()


def default_cache_key(req: FetchRequest) -> str:
    headers = json.dumps(sorted(req.headers.items())) if req.headers else ""
    return f"{req.method}:{req.url}:{headers}"


class CacheOptions(MiddlewareOptions):
    ttl_ms: float = Field(5 * 60 * 1000, gt=0)
    methods: tuple[str, ...] = ("GET",)
    storage: CacheStorage | None = None
    key_generator: Callable[[FetchRequest], str] = default_cache_key
    skip_patterns: tuple[UrlPattern, ...] = ()
    stale_while_revalidate: bool = False


def create_cache_middleware(
    options: CacheOptions | None = None,
    *,
    clock: Clock | None = None,
    **overrides: Any,
) -> Middleware:
    """
    Create a cache middleware.

    With `stale_while_revalidate`, a cache hit is returned immediately and the
    entry is refreshed by a background task. Storage failures are logged and
    the request is sent uncached.
    """
    opts = resolve_options(CacheOptions, options, overrides)
    now = clock or monotonic_ms
    storage = opts.storage if opts.storage is not None else MemoryStorage(clock=now)
    methods = frozenset(m.upper() for m in opts.methods)
    background: set[asyncio.Task[None]] = set()

    async def store(key: str, response: FetchResponse) -> None:
        stored_at = now()
        try:
            await storage.set(key, CacheEntry(response, stored_at, stored_at + opts.ttl_ms))
        except Exception:
            logger.warning(f"Failed to store cache entry {key!r}", exc_info=True)

    async def revalidate(req: FetchRequest, key: str, next: Next) -> None:
        try:
            fresh = await next(req)
        except Exception as e:
            logger.debug(f"Background revalidation of {req.url} failed: {e!r}")
            return
        if fresh.ok:
            await store(key, fresh)

    async def cache_middleware(req: FetchRequest, next: Next) -> FetchResponse:
        if req.method not in methods or matches_any(req.url, opts.skip_patterns):
            return await next(req)

        key = opts.key_generator(req)
        req = req.copy()
        req.context["cache_key"] = key
        try:
            cached = await storage.get(key)
        except Exception:
            logger.warning(f"Cache lookup failed for {key!r}", exc_info=True)
            return await next(req)

        if cached is not None:
            logger.debug(f"Cache hit for {req.method} {req.url}")
            if opts.stale_while_revalidate:
                task = asyncio.create_task(revalidate(req.copy(), key, next))
                background.add(task)
                task.add_done_callback(background.discard)
            return cached.response

        response = await next(req)
        if response.ok:
            await store(key, response)
        return response

    return cache_middleware
