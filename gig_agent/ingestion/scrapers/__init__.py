"""
Scraper Registry Module
=======================

Central registry of scraper units keyed by source type.
Provides factory functions for creating scrapers by type.
"""

from __future__ import annotations

from typing import Any

from gig_agent.core.enums import SourceType
from gig_agent.ingestion.scrapers.base import BaseScraper, scraper_config
from gig_agent.ingestion.scrapers.feed import FeedScraper
from gig_agent.ingestion.scrapers.manual import ManualScraper
from gig_agent.ingestion.scrapers.sandboxed import SandboxScraper

# Registry mapping source types to scraper classes
SCRAPER_REGISTRY: dict[SourceType, type[BaseScraper]] = {
    SourceType.SCRAPER: SandboxScraper,
    SourceType.MANUAL: ManualScraper,
    SourceType.API: FeedScraper,
}


def get_scraper(source_type: SourceType | str, **kwargs: Any) -> BaseScraper | None:
    """
    Get a scraper instance for a source type.

    Args:
        source_type: Source type (e.g., SourceType.SCRAPER or "manual")
        **kwargs: Constructor arguments (e.g., global_config)

    Returns:
        Scraper instance, or None if the type has no scraper
    """
    try:
        scraper_class = SCRAPER_REGISTRY.get(SourceType(source_type))
    except ValueError:
        return None
    if scraper_class is None:
        return None
    return scraper_class(**kwargs)


def register_scraper(source_type: SourceType, scraper_class: type[BaseScraper]) -> None:
    """
    Register a scraper class for a source type.

    Args:
        source_type: Source type to serve
        scraper_class: Scraper class (must inherit from BaseScraper)
    """
    if not isinstance(scraper_class, type) or not issubclass(scraper_class, BaseScraper):
        raise TypeError(f"{scraper_class} must inherit from BaseScraper")
    SCRAPER_REGISTRY[SourceType(source_type)] = scraper_class


def list_scrapers() -> dict[str, str]:
    """
    List registered scrapers.

    Returns:
        Mapping of source type value to scraper name
    """
    return {t.value: cls.SCRAPER_NAME for t, cls in SCRAPER_REGISTRY.items()}


__all__ = [
    "SCRAPER_REGISTRY",
    "get_scraper",
    "register_scraper",
    "list_scrapers",
    "scraper_config",
    "BaseScraper",
    "SandboxScraper",
    "ManualScraper",
    "FeedScraper",
]
