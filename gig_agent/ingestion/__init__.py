"""
Gig Agent Ingestion Framework
=============================

This package provides the pipeline that turns source output into the
canonical event catalog.

Pipeline Stages:
1. Version - Scraper code is stored, tested, activated and rolled back per source
2. Scrape - The source's scraper unit runs in an isolated process under a timeout
3. Normalize - Field names, dates, timezones, genres and lineups are cleaned up
4. Merge - Records are deduplicated against the catalog and conflicts resolved
   by source priority and trust
5. Record - Run outcome is stored on the source and in the run history
"""

from gig_agent.ingestion.registry import (
    GlobalConfig,
    MatchingConfig,
    MergeConfig,
    PlaylistConfig,
    RateLimitConfig,
    SourceConfig,
    SourceRegistry,
    get_default_registry,
)
from gig_agent.ingestion.crawler import (
    Crawler,
    FetchResult,
    TokenBucket,
)
from gig_agent.ingestion.normalizer import Normalizer
from gig_agent.ingestion.merge import MergeEngine, MergeResult
from gig_agent.ingestion.versions import ScraperVersionService
from gig_agent.ingestion.coordinator import IngestionCoordinator, IngestionResult
from gig_agent.ingestion.jobs import (
    JobResult,
    JobStatus,
    enqueue_ingestion,
    get_job_status,
    ingest_source,
)

__all__ = [
    # Registry
    "SourceRegistry",
    "SourceConfig",
    "RateLimitConfig",
    "GlobalConfig",
    "MergeConfig",
    "MatchingConfig",
    "PlaylistConfig",
    "get_default_registry",
    # Crawler
    "Crawler",
    "FetchResult",
    "TokenBucket",
    # Normalizer
    "Normalizer",
    # Merge
    "MergeEngine",
    "MergeResult",
    # Versions
    "ScraperVersionService",
    # Coordinator
    "IngestionCoordinator",
    "IngestionResult",
    # Jobs
    "ingest_source",
    "enqueue_ingestion",
    "get_job_status",
    "JobResult",
    "JobStatus",
]
