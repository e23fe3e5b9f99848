"""
HTTP Fetching Module
====================

Provides rate limiting and retrying HTTP requests shared by feed sources
and external catalog clients.

Retry policy: timeouts, transport errors, 429 and 5xx responses are retried
with exponential backoff up to ``max_retries`` attempts. Other 4xx responses
fail immediately.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import httpx

from gig_agent.core.errors import ExternalServiceError

logger = logging.getLogger(__name__)


@dataclass
class FetchResult:
    """Result of fetching a URL."""

    url: str
    content: bytes
    content_hash: str
    mime_type: str
    status_code: int
    fetched_at: datetime
    error: str | None = None

    @property
    def success(self) -> bool:
        """Check if fetch was successful."""
        return self.error is None and 200 <= self.status_code < 300

    @property
    def text(self) -> str:
        """Content decoded as UTF-8."""
        return self.content.decode("utf-8", errors="replace")


class TokenBucket:
    """
    Token bucket rate limiter.

    Allows bursting up to burst_limit requests, then enforces
    the steady-state rate of requests_per_second.
    """

    def __init__(self, requests_per_second: float, burst_limit: int) -> None:
        self.requests_per_second = requests_per_second
        self.burst_limit = burst_limit
        self.tokens = float(burst_limit)
        self.last_update = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """
        Acquire a token, waiting if necessary.

        This method blocks until a token is available.
        """
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self.last_update
            self.last_update = now

            # Add tokens based on elapsed time
            self.tokens = min(
                self.burst_limit, self.tokens + elapsed * self.requests_per_second
            )

            if self.tokens < 1.0:
                # Need to wait for tokens
                wait_time = (1.0 - self.tokens) / self.requests_per_second
                await asyncio.sleep(wait_time)
                self.last_update = time.monotonic()
                self.tokens = 0.0
            else:
                self.tokens -= 1.0


def is_retryable_status(status_code: int) -> bool:
    """Transient HTTP statuses worth retrying."""
    return status_code == 429 or status_code >= 500


def compute_hash(content: bytes | str) -> str:
    """
    Compute SHA-256 hash of content.

    Args:
        content: Raw bytes or text to hash

    Returns:
        Hex-encoded SHA-256 hash
    """
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


async def request_with_retries(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    service: str,
    max_retries: int = 3,
    limiter: TokenBucket | None = None,
    allow_statuses: frozenset[int] = frozenset(),
    backoff_base: float = 1.0,
    **kwargs: Any,
) -> httpx.Response:
    """
    Send a request, retrying transient failures with exponential backoff.

    Args:
        client: httpx client to send with
        method: HTTP method
        url: Absolute or client-relative URL
        service: Name used in errors and logs
        max_retries: Total attempts before giving up
        limiter: Optional rate limiter acquired before every attempt
        allow_statuses: Error statuses returned to the caller instead of raised
        backoff_base: Multiplier for the ``2**attempt`` backoff delay

    Returns:
        The successful (or explicitly allowed) response

    Raises:
        ExternalServiceError: On a non-retryable status or after exhausting retries
    """
    last_error = "unknown error"
    last_status: int | None = None
    attempts = max(1, max_retries)

    for attempt in range(attempts):
        if limiter is not None:
            await limiter.acquire()
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException:
            last_error = "request timed out"
            logger.warning(f"{service}: timeout on {url} (attempt {attempt + 1}/{attempts})")
        except httpx.TransportError as e:
            last_error = str(e) or e.__class__.__name__
            logger.warning(f"{service}: HTTP error on {url}: {e} (attempt {attempt + 1}/{attempts})")
        except httpx.HTTPError as e:
            # Redirect loops and undecodable bodies fail the same way every time
            raise ExternalServiceError(
                service, f"{e.__class__.__name__} for {url}: {e}"
            ) from e
        else:
            if response.status_code < 400 or response.status_code in allow_statuses:
                return response
            last_status = response.status_code
            last_error = f"HTTP {response.status_code}"
            if not is_retryable_status(response.status_code):
                raise ExternalServiceError(
                    service, f"{last_error} for {url}", status_code=response.status_code
                )
            logger.warning(f"{service}: {last_error} on {url} (attempt {attempt + 1}/{attempts})")

        # Wait before retry with exponential backoff
        if attempt < attempts - 1:
            await asyncio.sleep(backoff_base * 2**attempt)

    raise ExternalServiceError(
        service,
        f"{last_error} after {attempts} attempts for {url}",
        status_code=last_status,
        retryable=True,
    )


class Crawler:
    """
    Fetches pages and feeds with rate limiting and retries.

    Used by feed sources and for collecting HTML samples for scraper generation.
    """

    def __init__(
        self,
        user_agent: str = "GigAgent/0.1",
        timeout: float = 30.0,
        max_retries: int = 3,
        limiter: TokenBucket | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        backoff_base: float = 1.0,
    ) -> None:
        self.user_agent = user_agent
        self.timeout = timeout
        self.max_retries = max_retries
        self.limiter = limiter
        self.transport = transport
        self.backoff_base = backoff_base

    async def fetch(self, url: str) -> FetchResult:
        """
        Fetch a URL. Failures are reported on the result, not raised.

        Args:
            url: URL to fetch

        Returns:
            FetchResult with content or error
        """
        fetched_at = datetime.now(UTC)
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                headers={"User-Agent": self.user_agent},
                follow_redirects=True,
                transport=self.transport,
            ) as client:
                response = await request_with_retries(
                    client,
                    "GET",
                    url,
                    service="fetch",
                    max_retries=self.max_retries,
                    limiter=self.limiter,
                    backoff_base=self.backoff_base,
                )
        except ExternalServiceError as e:
            return FetchResult(
                url=url,
                content=b"",
                content_hash="",
                mime_type="",
                status_code=e.status_code or 0,
                fetched_at=fetched_at,
                error=e.message,
            )

        content = response.content
        return FetchResult(
            url=url,
            content=content,
            content_hash=compute_hash(content),
            mime_type=response.headers.get("content-type", "").split(";")[0].strip(),
            status_code=response.status_code,
            fetched_at=fetched_at,
        )

    async def fetch_json(self, url: str) -> Any:
        """
        Fetch and decode a JSON document.

        Raises:
            ExternalServiceError: If the fetch fails or the body is not JSON
        """
        result = await self.fetch(url)
        if not result.success:
            raise ExternalServiceError("fetch", result.error or f"HTTP {result.status_code}")
        try:
            return json.loads(result.content)
        except ValueError as e:
            raise ExternalServiceError("fetch", f"invalid JSON from {url}: {e}") from e
