"""
Base HTTP client with retry logic, bounded concurrency and error handling.

Foundation for the partner REST API client. Implements exponential backoff
with jitter and maps HTTP failures onto the APIError hierarchy.
"""
import asyncio
import logging
import random
from typing import Any, Dict, Optional

import httpx

from propfeed.core.errors import (
    APIError,
    FatalError,
    RateLimitError,
    RetryableError,
    classify_http_error,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_BACKOFF: float = 60.0
DEFAULT_JITTER_FACTOR: float = 0.25


def backoff_delay(
    attempt: int,
    backoff_factor: float,
    base_delay: float = 1.0,
    max_backoff: float = DEFAULT_MAX_BACKOFF,
) -> float:
    """
    Exponential backoff delay with jitter.

    Args:
        attempt: Current attempt number (0-indexed)
        backoff_factor: Exponential multiplier
        base_delay: Delay of the first retry in seconds
        max_backoff: Upper bound before jitter

    Returns:
        Delay in seconds (never below 0.1)
    """
    delay = min(base_delay * (backoff_factor ** attempt), max_backoff)

    # ±25% jitter
    jitter = delay * DEFAULT_JITTER_FACTOR * (2 * random.random() - 1)
    return max(0.1, delay + jitter)


class BaseAPIClient:
    """
    Base class for external REST API clients.

    Provides:
    - JSON GET requests with retry on 5xx, 429 and network errors
    - Exponential backoff with jitter
    - Bounded concurrency via semaphore
    - Connection pooling through one lazily created httpx.AsyncClient

    Subclasses set SOURCE_NAME and override _build_headers() for auth.
    """

    SOURCE_NAME: str = "unknown"

    DEFAULT_MAX_CONCURRENCY: int = 4
    DEFAULT_TIMEOUT: float = 30.0
    DEFAULT_CONNECT_TIMEOUT: float = 10.0
    DEFAULT_MAX_RETRIES: int = 3
    DEFAULT_BACKOFF_FACTOR: float = 2.0

    def __init__(
        self,
        base_url: str,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
        timeout: float = DEFAULT_TIMEOUT,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the API client.

        Args:
            base_url: Root URL; request paths are joined onto it
            max_concurrency: Maximum concurrent requests (semaphore size)
            max_retries: Maximum attempts per request
            backoff_factor: Exponential backoff multiplier
            timeout: Request timeout in seconds
            connect_timeout: Connection timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.max_concurrency = max_concurrency
        self.max_retries = max_retries
        self.backoff_factor = backoff_factor
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self._transport = transport

        self.semaphore = asyncio.Semaphore(max_concurrency)
        self._client: Optional[httpx.AsyncClient] = None

        logger.info(
            f"Initialized {self.SOURCE_NAME} client: "
            f"base_url={self.base_url}, "
            f"max_concurrency={max_concurrency}, "
            f"max_retries={max_retries}"
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client with connection pooling."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, connect=self.connect_timeout),
                follow_redirects=True,
                limits=httpx.Limits(
                    max_connections=self.max_concurrency * 2,
                    max_keepalive_connections=self.max_concurrency
                ),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.debug(f"{self.SOURCE_NAME} client closed")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _backoff(self, attempt: int) -> None:
        delay = backoff_delay(attempt, self.backoff_factor)
        logger.debug(f"Backing off for {delay:.2f}s (attempt {attempt + 1})")
        await asyncio.sleep(delay)

    def _build_headers(self) -> Dict[str, str]:
        """
        Build request headers.

        Override to add API-specific headers (e.g., Authorization).
        """
        return {
            "Accept": "application/json",
            "User-Agent": f"propfeed/{self.SOURCE_NAME}-client"
        }

    async def get(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        resource_id: str = "unknown"
    ) -> Dict[str, Any]:
        """
        Make a GET request with retry logic.

        Args:
            path: Path relative to base_url, or a full URL
            params: Query parameters
            resource_id: Identifier for logging

        Returns:
            Parsed JSON response

        Raises:
            APIError: On unrecoverable errors or when retries are exhausted
        """
        url = path if path.startswith("http") else f"{self.base_url}/{path.lstrip('/')}"
        headers = self._build_headers()

        async with self.semaphore:
            client = await self._get_client()
            last_error: Optional[APIError] = None

            for attempt in range(self.max_retries):
                try:
                    logger.debug(
                        f"[{self.SOURCE_NAME}] GET {resource_id} "
                        f"(attempt {attempt + 1}/{self.max_retries})"
                    )
                    response = await client.get(url, params=params, headers=headers)
                    response.raise_for_status()
                    return response.json()

                except httpx.HTTPStatusError as e:
                    error = classify_http_error(
                        e.response.status_code,
                        e.response.text[:500],
                        self.SOURCE_NAME
                    )

                    if not error.retryable or attempt == self.max_retries - 1:
                        raise error from e

                    last_error = error
                    if isinstance(error, RateLimitError):
                        retry_after = e.response.headers.get("Retry-After", "")
                        wait_time = int(retry_after) if retry_after.isdigit() else error.retry_after
                        logger.warning(f"[{self.SOURCE_NAME}] Rate limited. Waiting {wait_time}s")
                        await asyncio.sleep(wait_time)
                    else:
                        logger.warning(f"[{self.SOURCE_NAME}] Retryable HTTP error: {error}")
                        await self._backoff(attempt)

                except httpx.RequestError as e:
                    # Network errors are retryable
                    last_error = RetryableError(
                        message=f"Request failed: {e}",
                        source=self.SOURCE_NAME
                    )
                    if attempt == self.max_retries - 1:
                        raise last_error from e
                    logger.warning(
                        f"[{self.SOURCE_NAME}] Request error (attempt {attempt + 1}): {e}"
                    )
                    await self._backoff(attempt)

                except ValueError as e:
                    # Body was not JSON
                    raise FatalError(
                        message=f"Invalid JSON response for {resource_id}: {e}",
                        source=self.SOURCE_NAME
                    ) from e

            if last_error:
                raise last_error
            raise APIError(
                message=f"Failed to fetch {resource_id} after {self.max_retries} attempts",
                source=self.SOURCE_NAME
            )
