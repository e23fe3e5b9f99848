"""Tests for HTTP fetching and the JSON feed scraper."""

import json

import httpx
import pytest

from gig_agent.core.enums import SourceType
from gig_agent.core.errors import ExternalServiceError, ValidationError
from gig_agent.core.schema import Source
from gig_agent.ingestion.crawler import (
    Crawler,
    TokenBucket,
    compute_hash,
    is_retryable_status,
    request_with_retries,
)
from gig_agent.ingestion.registry import GlobalConfig
from gig_agent.ingestion.scrapers import FeedScraper


def scripted_transport(responses: list[httpx.Response], seen: list[httpx.Request] | None = None):
    """Transport replaying responses in order."""
    queue = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return queue.pop(0)

    return httpx.MockTransport(handler)


def fast_limiter() -> TokenBucket:
    return TokenBucket(requests_per_second=1000.0, burst_limit=100)


class TestHelpers:
    """Tests for small crawler helpers."""

    def test_compute_hash(self) -> None:
        """Test that text and bytes hash the same."""
        assert compute_hash("abc") == compute_hash(b"abc")
        assert len(compute_hash(b"")) == 64

    @pytest.mark.parametrize(
        "status,expected", [(429, True), (500, True), (503, True), (404, False), (400, False)]
    )
    def test_is_retryable_status(self, status: int, expected: bool) -> None:
        """Test the retryable status classification."""
        assert is_retryable_status(status) is expected


class TestTokenBucket:
    """Tests for TokenBucket."""

    @pytest.mark.asyncio
    async def test_burst_consumes_tokens(self) -> None:
        """Test that burst requests are served without waiting."""
        bucket = TokenBucket(requests_per_second=1.0, burst_limit=3)
        for _ in range(3):
            await bucket.acquire()
        assert bucket.tokens < 1.0


class TestRequestWithRetries:
    """Tests for request_with_retries."""

    @pytest.mark.asyncio
    async def test_retries_transient_errors(self) -> None:
        """Test that 503 and 429 are retried until success."""
        seen: list[httpx.Request] = []
        transport = scripted_transport(
            [httpx.Response(503), httpx.Response(429), httpx.Response(200, text="ok")], seen
        )
        async with httpx.AsyncClient(transport=transport) as client:
            response = await request_with_retries(
                client, "GET", "https://example.test/a", service="test", backoff_base=0
            )

        assert response.status_code == 200
        assert len(seen) == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries(self) -> None:
        """Test that exhausting retries raises a retryable error."""
        transport = scripted_transport([httpx.Response(500), httpx.Response(502)])
        async with httpx.AsyncClient(transport=transport) as client:
            with pytest.raises(ExternalServiceError) as exc_info:
                await request_with_retries(
                    client,
                    "GET",
                    "https://example.test/a",
                    service="test",
                    max_retries=2,
                    backoff_base=0,
                )

        assert exc_info.value.retryable is True
        assert exc_info.value.status_code == 502
        assert "after 2 attempts" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self) -> None:
        """Test that a 404 fails on the first attempt."""
        seen: list[httpx.Request] = []
        transport = scripted_transport([httpx.Response(404), httpx.Response(200)], seen)
        async with httpx.AsyncClient(transport=transport) as client:
            with pytest.raises(ExternalServiceError) as exc_info:
                await request_with_retries(
                    client, "GET", "https://example.test/a", service="test", backoff_base=0
                )

        assert len(seen) == 1
        assert exc_info.value.status_code == 404
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_allowed_status_returned(self) -> None:
        """Test that allowed statuses are handed back to the caller."""
        transport = scripted_transport([httpx.Response(404)])
        async with httpx.AsyncClient(transport=transport) as client:
            response = await request_with_retries(
                client,
                "GET",
                "https://example.test/a",
                service="test",
                allow_statuses=frozenset({404}),
            )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_transport_errors_retried(self) -> None:
        """Test that connection failures count as transient."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            response = await request_with_retries(
                client, "GET", "https://example.test/a", service="test", backoff_base=0
            )

        assert response.status_code == 200
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_redirect_loop_not_retried(self) -> None:
        """Test that non-transport request errors fail on the first attempt."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            raise httpx.TooManyRedirects("Exceeded maximum allowed redirects.", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(ExternalServiceError) as exc_info:
                await request_with_retries(
                    client, "GET", "https://example.test/a", service="test", backoff_base=0
                )

        assert len(calls) == 1
        assert "TooManyRedirects" in exc_info.value.message
        assert exc_info.value.retryable is False


class TestCrawler:
    """Tests for Crawler."""

    @pytest.mark.asyncio
    async def test_fetch_success(self) -> None:
        """Test a successful fetch."""
        seen: list[httpx.Request] = []
        transport = scripted_transport(
            [
                httpx.Response(
                    200,
                    content=b"<html>ok</html>",
                    headers={"content-type": "text/html; charset=utf-8"},
                )
            ],
            seen,
        )
        crawler = Crawler(user_agent="TestAgent/1.0", transport=transport, limiter=fast_limiter())

        result = await crawler.fetch("https://venue.example/calendar")

        assert result.success
        assert result.text == "<html>ok</html>"
        assert result.mime_type == "text/html"
        assert result.content_hash == compute_hash(b"<html>ok</html>")
        assert seen[0].headers["user-agent"] == "TestAgent/1.0"

    @pytest.mark.asyncio
    async def test_fetch_failure_reported(self) -> None:
        """Test that fetch reports errors instead of raising."""
        crawler = Crawler(transport=scripted_transport([httpx.Response(404)]))

        result = await crawler.fetch("https://venue.example/missing")

        assert not result.success
        assert result.status_code == 404
        assert "HTTP 404" in result.error

    @pytest.mark.asyncio
    async def test_fetch_json(self) -> None:
        """Test decoding a JSON document."""
        crawler = Crawler(transport=scripted_transport([httpx.Response(200, json={"a": [1, 2]})]))
        assert await crawler.fetch_json("https://feed.example/events.json") == {"a": [1, 2]}

    @pytest.mark.asyncio
    async def test_fetch_json_invalid(self) -> None:
        """Test that a non-JSON body raises ExternalServiceError."""
        crawler = Crawler(transport=scripted_transport([httpx.Response(200, text="<html>")]))
        with pytest.raises(ExternalServiceError):
            await crawler.fetch_json("https://feed.example/events.json")


FEED = {
    "data": {
        "events": [
            {
                "name": "Jazz Night",
                "start": {"local": "2026-10-24T20:00"},
                "url": "https://feed.example/e/1",
            },
            "not-an-event",
            {"name": "Late Set", "start": {"local": "2026-10-24T23:00"}},
        ]
    }
}


def feed_source(**config) -> Source:
    return Source(slug="city-feed", type=SourceType.API, config=config)


class TestFeedScraper:
    """Tests for FeedScraper."""

    @pytest.mark.asyncio
    async def test_maps_fields(self) -> None:
        """Test that items at the events path are mapped onto event fields."""
        scraper = FeedScraper(
            GlobalConfig(max_retries=1),
            transport=scripted_transport([httpx.Response(200, content=json.dumps(FEED))]),
        )
        source = feed_source(
            feed_url="https://feed.example/events.json",
            events_path="data.events",
            field_map={"title": "name", "startsAt": "start.local", "sourceUrl": "url"},
        )

        events = await scraper.scrape(source)

        assert len(events) == 2
        assert events[0]["title"] == "Jazz Night"
        assert events[0]["startsAt"] == "2026-10-24T20:00"
        assert events[0]["sourceUrl"] == "https://feed.example/e/1"
        assert "sourceUrl" not in events[1]

    @pytest.mark.asyncio
    async def test_requires_feed_url(self) -> None:
        """Test that a feed source needs a URL."""
        with pytest.raises(ValidationError):
            await FeedScraper().scrape(feed_source())

    @pytest.mark.asyncio
    async def test_missing_event_list(self) -> None:
        """Test that a document without a list at the path fails."""
        scraper = FeedScraper(
            GlobalConfig(max_retries=1),
            transport=scripted_transport([httpx.Response(200, json={"data": {}})]),
        )
        source = feed_source(feed_url="https://feed.example/events.json", events_path="data.events")

        with pytest.raises(ExternalServiceError):
            await scraper.scrape(source)

    @pytest.mark.asyncio
    async def test_top_level_list(self) -> None:
        """Test that a feed can be a bare list."""
        scraper = FeedScraper(
            GlobalConfig(max_retries=1),
            transport=scripted_transport([httpx.Response(200, json=[{"title": "Solo"}])]),
        )

        events = await scraper.scrape(feed_source(feed_url="https://feed.example/all.json"))

        assert events == [{"title": "Solo"}]
