"""
Async page fetcher for monitored targets.
Implements bounded reads, redirect following, retry with backoff and a global request-rate budget.
"""

import asyncio
from typing import Awaitable, Callable, Optional, Tuple

import httpx
from asyncio_throttle import Throttler
import structlog

from .exceptions import FetchError, FetchErrorKind
from .models import FetchConfig, FetchResult
from utilities.logger import RunLogger

logger = structlog.get_logger(__name__)


def build_throttler(rate_limit_per_second: float) -> Throttler:
    """Translate a requests-per-second budget into a Throttler window."""
    if rate_limit_per_second >= 1:
        return Throttler(rate_limit=int(rate_limit_per_second), period=1.0)
    return Throttler(rate_limit=1, period=1.0 / rate_limit_per_second)


class PageFetcher:
    """
    Retrieves raw HTML for a URL over HTTP.
    """

    def __init__(
        self,
        config: FetchConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the fetcher.

        Args:
            config: Fetcher configuration
            transport: Optional httpx transport (used by tests)
            sleep: Awaitable used for retry backoff
        """
        self.config = config
        self.throttler = build_throttler(config.rate_limit_per_second)
        self.run_logger = RunLogger("page_fetcher")
        self._sleep = sleep

        # HTTP client configuration
        self.client_config = {
            "timeout": httpx.Timeout(config.timeout),
            "headers": dict(config.headers),
            "follow_redirects": True,
            "limits": httpx.Limits(max_keepalive_connections=5, max_connections=10),
        }
        if transport is not None:
            self.client_config["transport"] = transport

    async def fetch(self, url: str) -> FetchResult:
        """
        Fetch a page, retrying transient failures with exponential backoff.

        Args:
            url: URL to request

        Returns:
            FetchResult with the decoded body and final status

        Raises:
            FetchError: network failure, timeout or non-success status
        """
        last_error: Optional[FetchError] = None

        for attempt in range(self.config.retry_attempts + 1):
            try:
                return await self._fetch_once(url)
            except FetchError as e:
                last_error = e
                if not e.retryable or attempt >= self.config.retry_attempts:
                    break
                delay = self.config.retry_delay * (2 ** attempt)
                self.run_logger.log_retry(url, attempt + 1, self.config.retry_attempts, delay)
                await self._sleep(delay)

        logger.warning(
            "Fetch failed",
            url=url,
            kind=last_error.kind.value,
            status_code=last_error.status_code,
            error=str(last_error)
        )
        raise last_error

    async def _fetch_once(self, url: str) -> FetchResult:
        """Perform a single bounded GET request."""
        async with self.throttler:
            try:
                async with httpx.AsyncClient(**self.client_config) as client:
                    async with client.stream("GET", url) as response:
                        if not response.is_success:
                            raise FetchError(
                                FetchErrorKind.NON_SUCCESS_STATUS,
                                url,
                                f"HTTP {response.status_code}",
                                status_code=response.status_code,
                            )

                        raw, truncated = await self._read_bounded(response)
                        body = raw.decode(response.encoding or "utf-8", errors="replace")

                        if truncated:
                            logger.info(
                                "Response body truncated",
                                url=url,
                                max_content_bytes=self.config.max_content_bytes
                            )

                        return FetchResult(
                            url=url,
                            final_url=str(response.url),
                            status_code=response.status_code,
                            body=body,
                            truncated=truncated,
                        )

            except httpx.TimeoutException as e:
                raise FetchError(FetchErrorKind.TIMEOUT, url, str(e) or "request timed out") from e
            except httpx.HTTPError as e:
                raise FetchError(FetchErrorKind.NETWORK, url, str(e) or type(e).__name__) from e

    async def _read_bounded(self, response: httpx.Response) -> Tuple[bytes, bool]:
        """Read at most max_content_bytes from a streaming response."""
        limit = self.config.max_content_bytes
        chunks = []
        total = 0

        async for chunk in response.aiter_bytes():
            remaining = limit - total
            if len(chunk) > remaining:
                chunks.append(chunk[:remaining])
                return b"".join(chunks), True
            chunks.append(chunk)
            total += len(chunk)

        return b"".join(chunks), False
