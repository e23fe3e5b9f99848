"""Scraper unit that executes a source's stored scraper version."""

from __future__ import annotations

from typing import Any

from gig_agent.core.errors import NoActiveVersionError
from gig_agent.core.schema import ScraperVersion, Source
from gig_agent.ingestion.sandbox import run_scraper_code
from gig_agent.ingestion.scrapers.base import BaseScraper, scraper_config


class SandboxScraper(BaseScraper):
    """Runs versioned scraper code in the sandboxed interpreter."""

    SCRAPER_NAME = "sandbox"
    REQUIRES_VERSION = True

    async def scrape(
        self,
        source: Source,
        version: ScraperVersion | None = None,
        timeout: float | None = None,
    ) -> list[dict[str, Any]]:
        if version is None:
            raise NoActiveVersionError(str(source.id))
        result = await run_scraper_code(
            version.code,
            scraper_config(source),
            timeout=timeout or self.global_config.scraper_timeout,
            max_output_bytes=self.global_config.max_output_bytes,
        )
        return result.events
