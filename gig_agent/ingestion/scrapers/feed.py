"""
Feed Scraper Module
===================

Scraper unit for sources that publish a JSON event feed.

Config keys:
- ``feed_url``: URL of the JSON document (required)
- ``events_path``: dot-separated path to the event list (e.g. "data.events")
- ``field_map``: event field -> feed key (dot paths allowed), e.g.
  ``{"title": "name", "startsAt": "start.local"}``
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from gig_agent.core.errors import ExternalServiceError, ValidationError
from gig_agent.core.schema import ScraperVersion, Source
from gig_agent.ingestion.crawler import Crawler, TokenBucket
from gig_agent.ingestion.registry import GlobalConfig
from gig_agent.ingestion.scrapers.base import BaseScraper

logger = logging.getLogger(__name__)


def _lookup(data: Any, path: str) -> Any:
    """Follow a dot-separated path through nested dicts."""
    current = data
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return None
        current = current[part]
    return current


class FeedScraper(BaseScraper):
    """Fetches a JSON feed and maps its items onto event fields."""

    SCRAPER_NAME = "feed"

    def __init__(
        self,
        global_config: GlobalConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(global_config)
        self.transport = transport

    async def scrape(
        self,
        source: Source,
        version: ScraperVersion | None = None,
        timeout: float | None = None,
    ) -> list[dict[str, Any]]:
        feed_url = source.config.get("feed_url")
        if not feed_url:
            raise ValidationError(f"Source '{source.slug}': config 'feed_url' is required")

        rate = self.global_config.default_rate_limit
        crawler = Crawler(
            user_agent=self.global_config.user_agent,
            timeout=timeout or self.global_config.request_timeout,
            max_retries=self.global_config.max_retries,
            limiter=TokenBucket(rate.requests_per_second, rate.burst_limit),
            transport=self.transport,
        )
        document = await crawler.fetch_json(feed_url)

        events_path = source.config.get("events_path")
        items = _lookup(document, events_path) if events_path else document
        if not isinstance(items, list):
            raise ExternalServiceError(
                "feed", f"{feed_url} did not contain an event list at '{events_path or '.'}'"
            )

        field_map: dict[str, str] = source.config.get("field_map", {})
        events = []
        for item in items:
            if not isinstance(item, dict):
                logger.warning(f"Skipping non-object feed item from {feed_url}")
                continue
            event = dict(item)
            for field_name, feed_key in field_map.items():
                value = _lookup(item, feed_key)
                if value is not None:
                    event[field_name] = value
            events.append(event)

        logger.info(f"Feed {feed_url} returned {len(events)} events")
        return events
