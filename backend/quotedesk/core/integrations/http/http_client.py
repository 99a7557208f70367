"""
Async HTTP client wrapper using aiohttp.
Used by the document renderer and email adapters; retries transient failures
with exponential backoff.
"""

import asyncio
from typing import Optional, Dict, Any
import aiohttp
import logging

logger = logging.getLogger(__name__)


class HttpClient:
    """
    Async HTTP client wrapper using aiohttp.
    Connection errors, timeouts and 5xx responses are retried; 4xx responses are not.
    Non-idempotent calls are retried only when the connection could not be opened.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = 30,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ):
        """
        Initialize HTTP client.

        Args:
            base_url: Optional base URL for all requests
            timeout: Per-request timeout in seconds
            max_retries: Maximum number of attempts
            retry_delay: Initial delay between retries in seconds
        """
        self.base_url = base_url
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()

    def _build_url(self, endpoint: str) -> str:
        """Build full URL from endpoint."""
        if self.base_url:
            if not endpoint:
                return self.base_url
            return f"{self.base_url.rstrip('/')}/{endpoint.lstrip('/')}"
        return endpoint

    @staticmethod
    def _is_retryable(exc: Exception, idempotent: bool = True) -> bool:
        if not idempotent:
            # Only failures where the request never reached the server
            return isinstance(exc, aiohttp.ClientConnectorError)
        if isinstance(exc, aiohttp.ClientResponseError):
            return exc.status >= 500
        return isinstance(exc, (aiohttp.ClientError, asyncio.TimeoutError))

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        as_bytes: bool = False,
        idempotent: bool = True,
        **kwargs: Any,
    ) -> Any:
        """
        Make HTTP request with retry logic and return the decoded body.

        Args:
            method: HTTP method
            url: Request URL
            as_bytes: Return the raw body instead of decoded JSON
            idempotent: When False, only connection failures are retried
            **kwargs: Additional arguments for aiohttp request
        """
        session = await self._get_session()
        last_exception: Optional[Exception] = None

        for attempt in range(self.max_retries):
            try:
                async with session.request(method, url, **kwargs) as response:
                    response.raise_for_status()
                    if as_bytes:
                        return await response.read()
                    return await response.json(content_type=None)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_exception = e
                if not self._is_retryable(e, idempotent):
                    logger.error(f"Request to {url} rejected: {e}")
                    raise
                if attempt < self.max_retries - 1:
                    delay = self.retry_delay * (2 ** attempt)
                    logger.warning(
                        f"Request failed (attempt {attempt + 1}/{self.max_retries}): {e}. Retrying in {delay}s..."
                    )
                    await asyncio.sleep(delay)
                else:
                    logger.error(f"Request failed after {self.max_retries} attempts: {e}")

        raise last_exception or aiohttp.ClientError("Request failed")

    async def post_json(
        self,
        endpoint: str,
        json: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
        idempotent: bool = True,
    ) -> Dict[str, Any]:
        """POST a JSON body and return the JSON response."""
        url = self._build_url(endpoint)
        return await self._request_with_retry("POST", url, idempotent=idempotent, json=json, headers=headers)

    async def post_for_bytes(
        self,
        endpoint: str,
        json: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
    ) -> bytes:
        """POST a JSON body and return the raw response body."""
        url = self._build_url(endpoint)
        return await self._request_with_retry("POST", url, as_bytes=True, json=json, headers=headers)
