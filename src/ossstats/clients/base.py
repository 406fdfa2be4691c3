"""Base async HTTP client with rate limiting, bounded retries and typed errors.

All upstream clients inherit from this base to ensure consistent behavior:
- Async/await for non-blocking I/O
- Connection pooling for performance
- Rate limiting to respect API quotas
- Bounded retries with exponential backoff
- A typed error taxonomy the refresh pipeline can classify

Error taxonomy:
    UpstreamError           any failed upstream call (status code + body)
    ├── UpstreamRateLimited 429 (or provider equivalent) after all retries
    ├── UpstreamTimeout     request timed out after all retries
    ├── NetworkError        connection-level failure after all retries
    └── UpstreamNotFound    404; public client methods turn this into an
                            explicit "not found" result instead of raising

Usage:
    class MyAPIClient(BaseAsyncClient):
        def __init__(self, rate_limit: int = 10):
            super().__init__(base_url="https://api.example.com", rate_limit=rate_limit)

        async def get_data(self, name: str) -> dict:
            return await self.get(f"/data/{name}")
"""

import asyncio
import logging
from typing import Any

import httpx


logger = logging.getLogger(__name__)

# Retry configuration
_RETRYABLE_STATUS_CODES = {429, 502, 503, 504}
_MAX_RETRIES = 3
_BASE_BACKOFF = 1.0  # seconds


class RateLimiter:
    """Token bucket rate limiter for async operations.

    Ensures we don't exceed API rate limits using a token bucket algorithm.

    Args:
        rate: Maximum requests per second
    """

    def __init__(self, rate: int) -> None:
        self.rate = rate
        self.tokens = rate
        self.updated_at: float = 0.0
        self._initialized: bool = False
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Acquire a token, waiting if necessary."""
        async with self._lock:
            loop = asyncio.get_running_loop()

            if not self._initialized:
                self.updated_at = loop.time()
                self._initialized = True

            while self.tokens < 1:
                now = loop.time()
                elapsed = now - self.updated_at
                self.tokens = min(self.rate, self.tokens + elapsed * self.rate)
                self.updated_at = now

                if self.tokens < 1:
                    wait_time = (1 - self.tokens) / self.rate
                    await asyncio.sleep(wait_time)

            self.tokens -= 1
            self.updated_at = loop.time()


class UpstreamError(Exception):
    """Base exception for upstream API errors."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class UpstreamRateLimited(UpstreamError):
    """Upstream kept rejecting us for rate limiting after all retries."""

    retryable = True


class UpstreamTimeout(UpstreamError):
    """Upstream did not answer in time after all retries."""

    retryable = True


class NetworkError(UpstreamError):
    """Connection-level failure after all retries."""

    retryable = True


class UpstreamNotFound(UpstreamError):
    """The requested subject does not exist upstream."""


class BaseAsyncClient:
    """Base async HTTP client with rate limiting and connection pooling.

    Args:
        base_url: Base URL for all API requests
        headers: Default headers for all requests
        rate_limit: Maximum requests per second (default: 10)
        timeout: Request timeout in seconds (default: 30)
        max_retries: Retries after the first attempt (default: 3)
        backoff_base: First backoff delay in seconds, doubled per retry (default: 1.0)
    """

    def __init__(
        self,
        base_url: str,
        headers: dict[str, str] | None = None,
        rate_limit: int = 10,
        timeout: float = 30.0,
        max_retries: int = _MAX_RETRIES,
        backoff_base: float = _BASE_BACKOFF,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.headers = headers or {}
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self._rate_limiter = RateLimiter(rate=rate_limit)
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "BaseAsyncClient":
        """Async context manager entry."""
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=self.headers,
            timeout=self.timeout,
            follow_redirects=True,
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _is_rate_limited(self, response: httpx.Response) -> bool:
        """Whether a response means "slow down". Providers may extend this."""
        return response.status_code == 429

    def _backoff(self, attempt: int) -> float:
        return self.backoff_base * (2 ** attempt)

    async def _send(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Make an HTTP request with rate limiting, retries, and error handling.

        Retries on rate limiting, 502/503/504, timeouts and network errors
        with exponential backoff. 404 raises UpstreamNotFound immediately;
        other 4xx raise UpstreamError immediately.

        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: Path relative to base_url, or an absolute URL
            params: Query parameters
            json_data: JSON body for POST/PUT requests
            headers: Extra per-request headers

        Returns:
            The successful httpx.Response

        Raises:
            UpstreamError: If request fails after all retries
        """
        if not self._client:
            raise RuntimeError("Client not initialized. Use async with context manager.")

        # Ensure relative endpoints start with /
        if not endpoint.startswith(("/", "http://", "https://")):
            endpoint = f"/{endpoint}"

        last_error: UpstreamError | None = None
        attempts = self.max_retries + 1

        for attempt in range(attempts):
            # Rate limit before each attempt
            await self._rate_limiter.acquire()

            logger.debug(
                "%s %s params=%s (attempt %d/%d)",
                method, endpoint, params, attempt + 1, attempts,
            )

            try:
                response = await self._client.request(
                    method=method,
                    url=endpoint,
                    params=params,
                    json=json_data,
                    headers=headers,
                )
            except httpx.TimeoutException as e:
                last_error = UpstreamTimeout(f"Request timeout for {endpoint}: {e}")
            except httpx.TransportError as e:
                last_error = NetworkError(f"Network error for {endpoint}: {e}")
            else:
                logger.debug("Response: %d for %s", response.status_code, endpoint)

                if response.status_code < 400:
                    return response

                error_body = response.text[:500]

                if response.status_code == 404:
                    raise UpstreamNotFound(
                        message=f"Not found: {endpoint}",
                        status_code=404,
                        response_body=error_body,
                    )

                if self._is_rate_limited(response):
                    last_error = UpstreamRateLimited(
                        message=f"Rate limited: {response.status_code} {endpoint}",
                        status_code=response.status_code,
                        response_body=error_body,
                    )
                elif response.status_code in _RETRYABLE_STATUS_CODES:
                    last_error = UpstreamError(
                        message=f"API request failed: {response.status_code}",
                        status_code=response.status_code,
                        response_body=error_body,
                    )
                else:
                    logger.error(
                        "API error: %d %s - %s",
                        response.status_code, endpoint, error_body,
                    )
                    raise UpstreamError(
                        message=f"API request failed: {response.status_code}",
                        status_code=response.status_code,
                        response_body=error_body,
                    )

            if attempt < self.max_retries:
                backoff = self._backoff(attempt)
                logger.warning(
                    "%s, retrying in %.1fs (attempt %d/%d)",
                    last_error, backoff, attempt + 1, attempts,
                )
                await asyncio.sleep(backoff)

        # Exhausted retries
        logger.error("Giving up on %s after %d attempts: %s", endpoint, attempts, last_error)
        raise last_error or UpstreamError(f"Request failed after retries: {endpoint}")

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
    ) -> Any:
        """Send a request and parse the JSON body.

        Raises:
            UpstreamError: On request failure or an unparseable body
        """
        response = await self._send(method, endpoint, params=params, json_data=json_data)
        try:
            return response.json()
        except ValueError as e:
            logger.error("Failed to parse JSON response: %s", e)
            raise UpstreamError(
                message=f"Invalid JSON response: {e}",
                status_code=response.status_code,
                response_body=response.text[:500],
            )

    async def get(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Convenience method for GET requests."""
        return await self._request("GET", endpoint, params=params)

    async def post(
        self,
        endpoint: str,
        json_data: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Convenience method for POST requests."""
        return await self._request("POST", endpoint, params=params, json_data=json_data)
