"""
Base async HTTP client with retry, backoff and error translation.

All upstream providers go through ``BaseAPIClient._request`` so they share
one policy: bounded timeout, up to ``max_retries`` retries with exponential
backoff on network errors, 429 and 5xx, no retry on other 4xx, and every
failure translated to a ``GalleryError`` kind.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

from gallery.config import redact
from gallery.errors import (
    GalleryError,
    NotFoundError,
    RateLimitedError,
    UpstreamError,
    UpstreamTimeoutError,
)

logger = logging.getLogger(__name__)


class BaseAPIClient:
    """Base class for upstream clients sharing one aiohttp session."""

    name = "upstream"

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 10.0,
        max_retries: int = 2,
        backoff: float = 1.0,
        max_backoff: float = 8.0,
        concurrency: int = 4,
    ):
        self._session = session
        self._owns_session = session is None
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff = backoff
        self.max_backoff = max_backoff
        self._semaphore = asyncio.Semaphore(max(1, concurrency))

    @property
    def session(self) -> aiohttp.ClientSession:
        """Lazy session for standalone use; the app injects a shared one."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    def _get_default_headers(self) -> Dict[str, str]:
        """Override in subclass to add auth headers."""
        return {
            "Accept": "application/json",
            "User-Agent": "GalleryAggregator/0.3.0",
        }

    def backoff_delay(self, attempt: int) -> float:
        return min(self.backoff * (2 ** attempt), self.max_backoff)

    async def _handle_response(self, response: aiohttp.ClientResponse) -> Any:
        status = response.status
        if status == 429:
            raise RateLimitedError(f"{self.name} rate limit exceeded", upstream_status=status)
        if status == 404:
            raise NotFoundError(f"{self.name} resource not found", upstream_status=status)
        if status >= 400:
            text = await response.text()
            raise UpstreamError(
                f"{self.name} returned HTTP {status}",
                detail=text[:300],
                upstream_status=status,
            )
        try:
            return await response.json(content_type=None)
        except (ValueError, aiohttp.ContentTypeError) as e:
            raise UpstreamError(
                f"{self.name} returned a malformed response",
                detail=str(e),
                upstream_status=status,
            )

    async def _request(
        self,
        method: str,
        url: str,
        params: Any = None,
        json_data: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """Make an HTTP request with retry logic."""
        request_headers = self._get_default_headers()
        if headers:
            request_headers.update(headers)

        last_error: Optional[GalleryError] = None

        for attempt in range(self.max_retries + 1):
            try:
                logger.debug(
                    "%s %s %s (attempt %d/%d)",
                    self.name, method, redact(url), attempt + 1, self.max_retries + 1,
                )
                async with self._semaphore:
                    async with self.session.request(
                        method,
                        url,
                        params=params,
                        json=json_data,
                        headers=request_headers,
                        timeout=aiohttp.ClientTimeout(total=self.timeout),
                    ) as response:
                        return await self._handle_response(response)

            except RateLimitedError as e:
                last_error = e
            except UpstreamError as e:
                # 4xx and malformed bodies are final
                if e.upstream_status is None or e.upstream_status < 500:
                    raise
                last_error = e
            except asyncio.TimeoutError:
                last_error = UpstreamTimeoutError(f"{self.name} request timed out")
            except aiohttp.ClientError as e:
                last_error = UpstreamError(f"{self.name} request failed", detail=str(e))

            if attempt < self.max_retries:
                delay = self.backoff_delay(attempt)
                logger.warning(
                    "%s request failed (%s); retrying in %.1fs",
                    self.name, last_error.message, delay,
                )
                await asyncio.sleep(delay)

        logger.error("%s request to %s failed after %d attempts", self.name, redact(url), self.max_retries + 1)
        raise last_error

    async def get(self, url: str, params: Any = None, headers: Optional[Dict[str, str]] = None) -> Any:
        return await self._request("GET", url, params=params, headers=headers)

    async def post(
        self,
        url: str,
        json_data: Any = None,
        params: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        return await self._request("POST", url, params=params, json_data=json_data, headers=headers)

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
