"""Scraper unit for manually entered events kept in the source config."""

from __future__ import annotations

import copy
from typing import Any

from gig_agent.core.errors import ValidationError
from gig_agent.core.schema import ScraperVersion, Source
from gig_agent.ingestion.scrapers.base import BaseScraper


class ManualScraper(BaseScraper):
    """
    Returns the events listed under ``events`` in the source config.

    Operators maintain the list; each run replays it through the normal
    normalize and merge path.
    """

    SCRAPER_NAME = "manual"

    async def scrape(
        self,
        source: Source,
        version: ScraperVersion | None = None,
        timeout: float | None = None,
    ) -> list[dict[str, Any]]:
        events = source.config.get("events", [])
        if not isinstance(events, list):
            raise ValidationError(f"Source '{source.slug}': config 'events' must be a list")
        return copy.deepcopy(events)
