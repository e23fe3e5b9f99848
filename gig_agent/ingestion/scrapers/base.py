"""
Scraper Base Module
===================

Defines the capability interface every scraper unit implements. The
ingestion coordinator and the version service only ever hold this
interface, so new kinds of sources plug in without touching them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from gig_agent.core.schema import ScraperVersion, Source
from gig_agent.ingestion.registry import GlobalConfig


def scraper_config(source: Source) -> dict[str, Any]:
    """
    The configuration handed to a scraper: the source's stored config plus
    its identity and website.
    """
    config = dict(source.config)
    config.setdefault("website", source.website)
    config.setdefault("slug", source.slug)
    config.setdefault("name", source.name)
    return config


class BaseScraper(ABC):
    """
    Abstract base class for scraper units.

    Subclasses must define SCRAPER_NAME and implement scrape(). Scrapers
    return raw event dicts; normalization happens downstream.
    """

    SCRAPER_NAME: str = "base"
    # Whether the scraper executes a stored ScraperVersion
    REQUIRES_VERSION: bool = False

    def __init__(self, global_config: GlobalConfig | None = None) -> None:
        self.global_config = global_config or GlobalConfig()

    @abstractmethod
    async def scrape(
        self,
        source: Source,
        version: ScraperVersion | None = None,
        timeout: float | None = None,
    ) -> list[dict[str, Any]]:
        """
        Produce raw event dicts for a source.

        Args:
            source: Source snapshot with its stored configuration
            version: Scraper version to execute, for version-backed scrapers
            timeout: Wall-clock limit in seconds

        Returns:
            Raw event dicts

        Raises:
            ExternalServiceError: If the target or the scraper code fails
        """
        ...

    def get_info(self) -> dict[str, str]:
        """Get scraper information."""
        return {
            "name": self.SCRAPER_NAME,
            "class": self.__class__.__name__,
            "requires_version": str(self.REQUIRES_VERSION).lower(),
        }
