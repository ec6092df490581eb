"""
Async HTTP client built on httpx.

`FetchClient` owns an `httpx.AsyncClient` and a list of middleware. Every call
is composed into a pipeline whose terminal step performs the actual transport
call and decodes the response body.
"""

from __future__ import annotations

import json as jsonlib
import logging
import os
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Any
from urllib.parse import urlencode, urljoin, urlsplit

import httpx

from ..exceptions import ConfigurationError, InvalidURLError, NetworkError, RequestTimeoutError
from .pipeline import FetchRequest, FetchResponse, Middleware, ResponseError, compose

logger = logging.getLogger(__name__)

ParamScalar = str | int | float | bool | None
ParamValue = ParamScalar | Sequence[ParamScalar]

_BINARY_CONTENT_TYPES = ("application/octet-stream", "image/", "video/", "audio/")
_ABSOLUTE_PREFIXES = ("http://", "https://", "//")


@dataclass(frozen=True, slots=True)
class ClientConfig:
    base_url: str | None = None
    timeout: float | None = 30.0
    headers: Mapping[str, str] = field(default_factory=dict)
    follow_redirects: bool = True
    transport: httpx.AsyncBaseTransport | None = None

    @classmethod
    def from_env(cls, prefix: str = "FETCHKIT_", **overrides: Any) -> ClientConfig:
        """
        Build a config from environment variables.

        Reads `{prefix}BASE_URL` and `{prefix}TIMEOUT` (seconds); explicit keyword
        arguments win over the environment.
        """
        values: dict[str, Any] = {}
        base_url = os.environ.get(f"{prefix}BASE_URL")
        if base_url:
            values["base_url"] = base_url
        timeout = os.environ.get(f"{prefix}TIMEOUT")
        if timeout:
            try:
                values["timeout"] = float(timeout)
            except ValueError as e:
                raise ConfigurationError(
                    f"{prefix}TIMEOUT must be a number of seconds, got {timeout!r}", cause=e
                ) from e
        values.update(overrides)
        return cls(**values)


@dataclass(frozen=True, slots=True)
class HeadMetadata:
    response: FetchResponse
    exists: bool
    content_type: str | None
    content_length: int | None
    last_modified: datetime | None
    etag: str | None
    cache_control: str | None


def _is_absolute(url: str) -> bool:
    return url.startswith(_ABSOLUTE_PREFIXES)


def _param_text(value: ParamScalar) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _clean_params(params: Mapping[str, ParamValue]) -> list[tuple[str, str]]:
    """Flatten params into pairs; sequences repeat the key, `None` is dropped."""
    cleaned: list[tuple[str, str]] = []
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            cleaned.extend((key, _param_text(item)) for item in value if item is not None)
        else:
            cleaned.append((key, _param_text(value)))
    return cleaned


def _decode_body(response: httpx.Response) -> Any:
    content_type = response.headers.get("content-type", "")
    if "application/json" in content_type:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text
    if "text/" in content_type:
        return response.text
    if any(t in content_type for t in _BINARY_CONTENT_TYPES):
        return response.content
    return response.text or None


class FetchClient:
    """
    Async HTTP client with an intercepting middleware chain.

    Example:
        ```python
        async with FetchClient(ClientConfig(base_url="https://api.example.com")) as client:
            client.use(create_retry_middleware())
            result = await client.get("/users", {"active": True})
            if result.ok:
                print(result.data)
        ```

    Middleware run in registration order: the first one registered sees the
    request first and the response last.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        middlewares: Iterable[Middleware] = (),
    ) -> None:
        self._config = config or ClientConfig()
        self._base_url = self._config.base_url
        self._middlewares: list[Middleware] = list(middlewares)
        self._http = httpx.AsyncClient(
            headers=dict(self._config.headers),
            timeout=self._config.timeout,
            follow_redirects=self._config.follow_redirects,
            transport=self._config.transport,
        )

    async def __aenter__(self) -> FetchClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying httpx client."""
        await self._http.aclose()

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def base_url(self) -> str | None:
        return self._base_url

    @property
    def middlewares(self) -> tuple[Middleware, ...]:
        return tuple(self._middlewares)

    def use(self, middleware: Middleware) -> FetchClient:
        """Append a middleware to the chain. Returns the client for chaining."""
        self._middlewares.append(middleware)
        return self

    def set_base_url(self, base_url: str | None) -> FetchClient:
        self._base_url = base_url
        return self

    # =========================================================================
    # URL handling
    # =========================================================================

    def resolve_url(self, url: str) -> str:
        if _is_absolute(url) or not self._base_url:
            return url
        parts = urlsplit(self._base_url)
        if not parts.scheme or not parts.netloc:
            raise InvalidURLError(url, self._base_url)
        return urljoin(self._base_url, url)

    def build_url(self, url: str, params: Mapping[str, ParamValue] | None = None) -> str:
        resolved = self.resolve_url(url)
        if not params:
            return resolved
        cleaned = _clean_params(params)
        if not _is_absolute(resolved):
            query = urlencode(cleaned)
            if not query:
                return resolved
            path, hash_mark, fragment = resolved.partition("#")
            separator = "&" if "?" in path else "?"
            return f"{path}{separator}{query}{hash_mark}{fragment}"
        return str(httpx.URL(resolved).copy_merge_params(cleaned))

    # =========================================================================
    # Core request path
    # =========================================================================

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: Mapping[str, ParamValue] | None = None,
        headers: Mapping[str, str] | None = None,
        body: Any | None = None,
        json: Any | None = None,
        timeout: float | None = None,
    ) -> FetchResponse:
        """
        Send a request through the middleware chain.

        Args:
            method: HTTP method (case-insensitive)
            url: Absolute URL, or a path resolved against the base URL
            params: Query parameters; `None` values are dropped
            headers: Extra request headers
            body: Raw body (bytes/str) passed to the transport unchanged
            json: Body serialised as JSON (sets Content-Type if absent)
            timeout: Per-request timeout in seconds

        Returns:
            The response produced by the chain. Transport failures are raised as
            `NetworkError` unless a middleware (e.g. retry) turns them into a
            status-0 response.
        """
        req_headers = httpx.Headers(headers or {})
        if json is not None:
            body = jsonlib.dumps(json)
            if "content-type" not in req_headers:
                req_headers["Content-Type"] = "application/json"
        req = FetchRequest(
            method=method,
            url=self.build_url(url, params),
            headers=req_headers,
            body=body,
            timeout=timeout,
        )
        pipeline = compose(self._middlewares, self._send)
        return await pipeline(req)

    async def _send(self, req: FetchRequest) -> FetchResponse:
        timeout = req.timeout if req.timeout is not None else self._config.timeout
        content: bytes | str | None = None
        json_body: Any | None = None
        if isinstance(req.body, (bytes, str)):
            content = req.body
        elif req.body is not None:
            json_body = req.body

        try:
            http_request = self._http.build_request(
                req.method,
                req.url,
                params=req.params,
                headers=req.headers,
                content=content,
                json=json_body,
                timeout=timeout,
            )
            response = await self._http.send(http_request)
        except httpx.TimeoutException as e:
            logger.debug(f"{req.method} {req.url} timed out: {e}")
            raise RequestTimeoutError("Request timed out", req.url, cause=e) from e
        except httpx.TransportError as e:
            logger.debug(f"{req.method} {req.url} failed: {e!r}")
            raise NetworkError(str(e) or "Failed to fetch", req.url, cause=e) from e

        data = _decode_body(response)
        ok = 200 <= response.status_code < 300
        return FetchResponse(
            status=response.status_code,
            status_text=response.reason_phrase,
            headers=response.headers,
            data=data if ok else None,
            url=str(response.url),
            error=None if ok else ResponseError(response.reason_phrase, data),
        )

    # =========================================================================
    # Convenience methods
    # =========================================================================

    async def get(
        self,
        url: str,
        params: Mapping[str, ParamValue] | None = None,
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> FetchResponse:
        return await self.request("GET", url, params=params, headers=headers, timeout=timeout)

    async def head(
        self,
        url: str,
        params: Mapping[str, ParamValue] | None = None,
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> FetchResponse:
        return await self.request("HEAD", url, params=params, headers=headers, timeout=timeout)

    async def delete(
        self,
        url: str,
        params: Mapping[str, ParamValue] | None = None,
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> FetchResponse:
        return await self.request("DELETE", url, params=params, headers=headers, timeout=timeout)

    async def post(
        self,
        url: str,
        json: Any | None = None,
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> FetchResponse:
        return await self.request("POST", url, json=json, headers=headers, timeout=timeout)

    async def put(
        self,
        url: str,
        json: Any | None = None,
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> FetchResponse:
        return await self.request("PUT", url, json=json, headers=headers, timeout=timeout)

    async def patch(
        self,
        url: str,
        json: Any | None = None,
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> FetchResponse:
        return await self.request("PATCH", url, json=json, headers=headers, timeout=timeout)

    async def head_metadata(
        self, url: str, params: Mapping[str, ParamValue] | None = None
    ) -> HeadMetadata:
        """Issue a HEAD request and pull the common metadata headers out of it."""
        response = await self.head(url, params)
        content_length = response.headers.get("content-length")
        last_modified = response.headers.get("last-modified")
        parsed_last_modified: datetime | None = None
        if last_modified:
            try:
                parsed_last_modified = parsedate_to_datetime(last_modified)
            except (TypeError, ValueError):
                parsed_last_modified = None
        size = int(content_length) if content_length and content_length.isdigit() else None
        return HeadMetadata(
            response=response,
            exists=response.ok,
            content_type=response.headers.get("content-type"),
            content_length=size,
            last_modified=parsed_last_modified,
            etag=response.headers.get("etag"),
            cache_control=response.headers.get("cache-control"),
        )
