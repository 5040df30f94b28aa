"""
Shared aiohttp plumbing for JSON services (marketplaces, wallet relay).

Maps transport failures and HTTP status codes onto the error taxonomy:

    - 429                -> RateLimitError (retryable)
    - 5xx                -> ServiceError(retryable=True)
    - other 4xx          -> ServiceError(retryable=False)
    - timeout            -> ServiceTimeoutError (retryable)
    - connection errors  -> ServiceError(retryable=True)
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

from kizuna_bot.errors import (
    ErrorCode,
    RateLimitError,
    ServiceError,
    ServiceTimeoutError,
)

from .retry import RetryOptions, with_retry

logger = logging.getLogger(__name__)


class JsonHttpClient:
    """
    Async JSON client with an optionally owned aiohttp session.

    Subclasses set ``SERVICE_NAME`` and build requests with ``_request``.

    Usage:
        async with SomeClient(base_url="https://...") as client:
            data = await client._request("GET", "/path")
    """

    SERVICE_NAME = "http"

    def __init__(
        self,
        base_url: str,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
        headers: Optional[Dict[str, str]] = None,
        retry_options: Optional[RetryOptions] = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            base_url: Service root, without trailing slash
            session: Optional aiohttp session (created lazily if not provided)
            timeout: Total request timeout in seconds
            headers: Extra headers sent with every request
            retry_options: Retry transient failures with these settings
                           (None = single attempt)
        """
        self._base_url = base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._headers = {"Content-Type": "application/json", **(headers or {})}
        self._retry_options = retry_options

    async def __aenter__(self):
        self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the session if we created it."""
        if self._owns_session and self._session:
            await self._session.close()
            self._session = None

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        """Make a request, retrying transient failures if configured."""
        if self._retry_options is None:
            return await self._request_once(method, path, **kwargs)
        return await with_retry(
            lambda: self._request_once(method, path, **kwargs),
            self._retry_options,
        )

    async def _request_once(self, method: str, path: str, **kwargs) -> Any:
        session = self._ensure_session()
        url = f"{self._base_url}{path}"

        try:
            async with session.request(
                method, url, headers=self._headers, timeout=self._timeout, **kwargs
            ) as response:
                if response.status == 429:
                    raise RateLimitError(f"{self.SERVICE_NAME} rate limit exceeded")

                if 400 <= response.status < 500:
                    text = await response.text()
                    raise ServiceError(
                        f"{self.SERVICE_NAME} API error: {response.status} - {text}",
                        status_code=response.status,
                        retryable=False,
                    )

                if response.status >= 500:
                    text = await response.text()
                    raise ServiceError(
                        f"{self.SERVICE_NAME} server error: {response.status} - {text}",
                        status_code=response.status,
                        retryable=True,
                    )

                return await response.json()

        except asyncio.TimeoutError as e:
            raise ServiceTimeoutError(f"{self.SERVICE_NAME} request timed out: {url}") from e

        except aiohttp.ClientError as e:
            logger.debug(f"{self.SERVICE_NAME} transport error: {e}")
            raise ServiceError(
                f"{self.SERVICE_NAME} request failed: {e}",
                code=ErrorCode.NETWORK_ERROR,
                retryable=True,
            ) from e
