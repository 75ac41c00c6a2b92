"""
HTTP transport for upstream football data providers.

Asynchronous aiohttp client that sends RapidAPI credentials and conditional
request headers, and maps every transport outcome to the gateway's error
taxonomy.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import aiohttp

from fpl_gateway.config import SourceConfig
from fpl_gateway.utils.exceptions import (
    APIError,
    AuthError,
    RateLimitedError,
    SchemaMismatchError,
    TransientNetworkError,
    UpstreamServerError,
)
from fpl_gateway.utils.logger import get_api_logger


logger = logging.getLogger(__name__)


@dataclass
class HttpResponse:
    """Outcome of a successful or not-modified upstream call.

    Attributes:
        status: HTTP status code (200 or 304)
        data: Decoded JSON body (None for 304)
        etag: ETag validator, if sent
        last_modified: Last-Modified validator, if sent
        rate_limit_remaining: x-ratelimit-requests-remaining, if sent
        rate_limit_limit: x-ratelimit-requests-limit, if sent
    """

    status: int
    data: Any = None
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    rate_limit_remaining: Optional[int] = None
    rate_limit_limit: Optional[int] = None
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def not_modified(self) -> bool:
        return self.status == 304


def _int_header(value: Optional[str]) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except ValueError:
        return None


def _retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given in seconds."""
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


class SourceHttpClient:
    """Asynchronous HTTP client for one upstream source.

    Features:
    - One aiohttp session per source
    - ClientTimeout(total=timeout) as the per-call deadline
    - If-None-Match / If-Modified-Since conditional requests
    - Status-to-exception mapping (401/403, 429, 5xx, other 4xx)
    - Quota header capture

    Example:
        ```python
        config = SourceConfig.rapidapi_fpl_from_env()

        async with SourceHttpClient(config) as client:
            response = await client.get("/api/fixtures/")
            print(len(response.data))
        ```
    """

    def __init__(
        self,
        config: SourceConfig,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """Initialize HTTP client.

        Args:
            config: Source configuration
            session: Pre-built session (the client will not close it)
        """
        self.config = config
        self._session = session
        self._owns_session = session is None
        self._api_logger = get_api_logger()
        self._stats = {
            "requests_made": 0,
            "not_modified": 0,
            "errors": 0,
        }

        logger.info(
            f"Initialized SourceHttpClient for {config.name}",
            extra={"base_url": config.base_url, "timeout": config.timeout},
        )

    async def __aenter__(self) -> "SourceHttpClient":
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _ensure_session(self) -> None:
        """Ensure aiohttp session is initialized."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
            logger.debug(f"Created new aiohttp session for {self.config.name}")

    async def close(self) -> None:
        """Close aiohttp session and cleanup resources."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            logger.debug(f"Closed aiohttp session for {self.config.name}")

    def _build_headers(
        self,
        etag: Optional[str],
        last_modified: Optional[str],
    ) -> Dict[str, str]:
        headers = {
            "X-RapidAPI-Key": self.config.api_key,
            "X-RapidAPI-Host": self.config.host,
            "Accept": "application/json",
        }
        if etag:
            headers["If-None-Match"] = etag
        if last_modified:
            headers["If-Modified-Since"] = last_modified
        return headers

    async def get(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        etag: Optional[str] = None,
        last_modified: Optional[str] = None,
    ) -> HttpResponse:
        """Perform a GET against the source.

        Args:
            path: Path below the source base URL
            params: Query parameters
            etag: Cached ETag for If-None-Match
            last_modified: Cached Last-Modified for If-Modified-Since

        Returns:
            HttpResponse with decoded JSON, or status 304 when not modified

        Raises:
            TransientNetworkError: Connection failure or deadline exceeded
            AuthError: Authentication failed (401/403)
            RateLimitedError: Upstream quota exceeded (429)
            UpstreamServerError: Server error (5xx)
            APIError: Other client errors (4xx)
            SchemaMismatchError: Body is not decodable JSON
        """
        await self._ensure_session()

        url = f"{self.config.base_url.rstrip('/')}/{path.lstrip('/')}"
        source = self.config.name
        self._stats["requests_made"] += 1

        self._api_logger.debug(
            f"GET {url}",
            extra={"source": source, "params": params, "conditional": bool(etag or last_modified)},
        )

        try:
            async with self._session.get(
                url,
                params=params,
                headers=self._build_headers(etag, last_modified),
            ) as response:
                status = response.status
                headers = response.headers

                if status == 304:
                    self._stats["not_modified"] += 1
                    self._api_logger.debug(f"GET {url} - 304 Not Modified")
                    return self._build_response(status, None, headers)

                if status in (401, 403):
                    self._stats["errors"] += 1
                    raise AuthError(
                        f"Authentication failed: {status}",
                        endpoint=path,
                        status_code=status,
                        response_body=await response.text(),
                        source=source,
                    )

                if status == 429:
                    self._stats["errors"] += 1
                    retry_after = _retry_after(headers.get("Retry-After"))
                    self._api_logger.warning(
                        f"Rate limit exceeded for {source}",
                        extra={"endpoint": path, "retry_after": retry_after},
                    )
                    raise RateLimitedError(
                        f"{source} rate limited",
                        retry_after=retry_after,
                        endpoint=path,
                        status_code=status,
                        response_body=await response.text(),
                        source=source,
                    )

                if status >= 500:
                    self._stats["errors"] += 1
                    raise UpstreamServerError(
                        f"Server error: {status}",
                        endpoint=path,
                        status_code=status,
                        response_body=await response.text(),
                        source=source,
                    )

                if status >= 400:
                    self._stats["errors"] += 1
                    raise APIError(
                        f"Request failed: {status}",
                        endpoint=path,
                        status_code=status,
                        response_body=await response.text(),
                        source=source,
                    )

                try:
                    data = await response.json(content_type=None)
                except (ValueError, aiohttp.ContentTypeError) as e:
                    self._stats["errors"] += 1
                    raise SchemaMismatchError(
                        f"Response body from {source} is not valid JSON",
                        source=source,
                        field=path,
                    ) from e

                self._api_logger.debug(f"GET {url} - Status: {status}")
                return self._build_response(status, data, headers)

        except asyncio.TimeoutError as e:
            self._stats["errors"] += 1
            raise TransientNetworkError(
                f"Request to {source} timed out after {self.config.timeout}s",
                endpoint=path,
                source=source,
            ) from e

        except aiohttp.ClientError as e:
            self._stats["errors"] += 1
            raise TransientNetworkError(
                f"HTTP client error: {e}",
                endpoint=path,
                source=source,
            ) from e

    def _build_response(self, status: int, data: Any, headers) -> HttpResponse:
        return HttpResponse(
            status=status,
            data=data,
            etag=headers.get("ETag"),
            last_modified=headers.get("Last-Modified"),
            rate_limit_remaining=_int_header(headers.get("x-ratelimit-requests-remaining")),
            rate_limit_limit=_int_header(headers.get("x-ratelimit-requests-limit")),
            headers=dict(headers),
        )

    def get_stats(self) -> Dict[str, Any]:
        """Get transport counters."""
        return dict(self._stats)
