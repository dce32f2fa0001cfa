"""Base connector infrastructure for feed downloads.

Provides the BaseConnector abstract class with:
- HTTP client via httpx with connection pooling
- Retry with exponential backoff + jitter via tenacity
- Structured logging via structlog

Exception hierarchy:
- ConnectorError: base for all connector errors
- RateLimitError: API rate limit hit (HTTP 429)
- DataParsingError: response data parse failure
- FetchError: HTTP fetch failure after retries exhausted
"""

from __future__ import annotations

import abc
from typing import Any, Iterator, Optional

import httpx
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from price_importer.core.models.records import CompositeRecord
from price_importer.core.utils.logging_config import get_logger


# ---------------------------------------------------------------------------
# Exception hierarchy
# ---------------------------------------------------------------------------
class ConnectorError(Exception):
    """Base exception for all connector errors."""


class RateLimitError(ConnectorError):
    """Raised when the feed returns a 429 rate limit response."""


class DataParsingError(ConnectorError):
    """Raised when response data cannot be parsed into the expected format."""


class FetchError(ConnectorError):
    """Raised when an HTTP request fails after all retry attempts."""


# ---------------------------------------------------------------------------
# BaseConnector ABC
# ---------------------------------------------------------------------------
class BaseConnector(abc.ABC):
    """Abstract base class for feed connectors.

    Subclasses MUST override:
        SOURCE_NAME: str - identifier (e.g., "AEMO")
        BASE_URL: str - base URL of the feed

    Subclasses MAY override:
        MAX_RETRIES: int - retry attempts on failure (default 3)
        TIMEOUT_SECONDS: float - HTTP timeout per request (default 30.0)

    Usage::

        with MyConnector() as conn:
            for record in conn.records(region="NSW1", year=2016, month=1):
                ...
    """

    # Subclasses MUST override
    SOURCE_NAME: str = ""
    BASE_URL: str = ""

    # Subclasses MAY override
    MAX_RETRIES: int = 3
    TIMEOUT_SECONDS: float = 30.0

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self.base_url = base_url or self.BASE_URL
        self.timeout_seconds = timeout_seconds or self.TIMEOUT_SECONDS
        self._client: httpx.Client | None = None
        self.log = get_logger("connectors").bind(connector=self.SOURCE_NAME)

    def __enter__(self) -> "BaseConnector":
        """Create and configure the httpx client."""
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout_seconds),
            follow_redirects=True,
            limits=httpx.Limits(
                max_connections=10,
                max_keepalive_connections=5,
            ),
        )
        return self

    def __exit__(self, *exc: Any) -> None:
        """Close the httpx client if open."""
        if self._client is not None:
            self._client.close()
            self._client = None

    @property
    def client(self) -> httpx.Client:
        """Return the active httpx client.

        Raises:
            ConnectorError: If the client has not been initialized via __enter__.
        """
        if self._client is None:
            raise ConnectorError(
                f"{self.SOURCE_NAME}: HTTP client not initialized. "
                "Use 'with connector:' context manager."
            )
        return self._client

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Execute an HTTP request with tenacity retry logic.

        Retries on: httpx.HTTPStatusError, httpx.ConnectError,
        httpx.TimeoutException and RateLimitError.
        Backoff: exponential with jitter (initial=1s, max=30s, jitter=5s).

        Raises:
            FetchError: If all retry attempts are exhausted.
        """
        try:
            for attempt in Retrying(
                retry=retry_if_exception_type(
                    (
                        httpx.HTTPStatusError,
                        httpx.ConnectError,
                        httpx.TimeoutException,
                        RateLimitError,
                    )
                ),
                stop=stop_after_attempt(self.MAX_RETRIES),
                wait=wait_exponential_jitter(initial=1, max=30, jitter=5),
                reraise=True,
            ):
                with attempt:
                    self.log.debug(
                        "http_request",
                        method=method,
                        url=url,
                        attempt=attempt.retry_state.attempt_number,
                    )
                    response = self.client.request(method, url, **kwargs)
                    if response.status_code == 429:
                        raise RateLimitError(
                            f"{self.SOURCE_NAME}: Rate limit exceeded (HTTP 429)"
                        )
                    response.raise_for_status()
                    return response
        except (httpx.HTTPError, RateLimitError) as exc:
            raise FetchError(f"{self.SOURCE_NAME}: {method} {url} failed: {exc}") from exc

        # Should not be reached, but satisfies type checker
        raise FetchError(f"{self.SOURCE_NAME}: Request failed after retries")  # pragma: no cover

    # ---------------------------------------------------------------------------
    # Abstract interface
    # ---------------------------------------------------------------------------
    @abc.abstractmethod
    def records(self, **kwargs: Any) -> Iterator[CompositeRecord]:
        """Yield the composite records of one feed file.

        Args:
            **kwargs: Connector-specific file selection.
        """
        ...
