"""
Source Registry Module
======================

Loads pipeline configuration from a YAML file: global HTTP settings, merge
and matching tunables, and seed definitions for regions, venues and sources.
Seeds are upserted into the database, which owns Source records from then on.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from sqlalchemy.orm import Session

from gig_agent.core.enums import MatchNamespace, SourceCategory, SourceType
from gig_agent.core.errors import ValidationError
from gig_agent.core.schema import DEFAULT_PRIORITY, DEFAULT_TRUST_SCORE, Region, Source, Venue
from gig_agent.db.repositories import RegionRepository, SourceRepository, VenueRepository

logger = logging.getLogger(__name__)


@dataclass
class RateLimitConfig:
    """Rate limiting configuration for an external endpoint."""

    requests_per_second: float = 1.0
    burst_limit: int = 5

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RateLimitConfig:
        """Create from dictionary, using defaults for missing values."""
        if data is None:
            return cls()
        return cls(
            requests_per_second=float(data.get("requests_per_second", 1.0)),
            burst_limit=int(data.get("burst_limit", 5)),
        )


@dataclass
class RegionConfig:
    """Seed definition of a region."""

    slug: str
    name: str
    timezone: str = "America/New_York"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RegionConfig:
        """Create from dictionary."""
        return cls(
            slug=data["slug"],
            name=data.get("name", data["slug"]),
            timezone=data.get("timezone", "America/New_York"),
        )


@dataclass
class VenueConfig:
    """Seed definition of a venue."""

    slug: str
    name: str
    region: str
    timezone: str | None = None
    website: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VenueConfig:
        """Create from dictionary."""
        return cls(
            slug=data["slug"],
            name=data.get("name", data["slug"]),
            region=data["region"],
            timezone=data.get("timezone"),
            website=data.get("website"),
        )


@dataclass
class SourceConfig:
    """Seed definition of an event source."""

    slug: str
    name: str = ""
    type: SourceType = SourceType.SCRAPER
    category: SourceCategory = SourceCategory.VENUE
    priority: int = DEFAULT_PRIORITY
    trust_score: float = DEFAULT_TRUST_SCORE
    enabled: bool = True
    website: str | None = None
    venue: str | None = None
    description: str = ""
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    config: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(
        cls, data: dict[str, Any], default_rate_limit: RateLimitConfig | None = None
    ) -> SourceConfig:
        """Create from dictionary."""
        rate_limit_data = data.get("rate_limit")
        if rate_limit_data:
            rate_limit = RateLimitConfig.from_dict(rate_limit_data)
        elif default_rate_limit:
            rate_limit = default_rate_limit
        else:
            rate_limit = RateLimitConfig()

        trust_score = float(data.get("trust_score", DEFAULT_TRUST_SCORE))
        if not 0.0 <= trust_score <= 1.0:
            raise ValidationError(
                f"Source '{data.get('slug')}': trust_score must be between 0 and 1"
            )

        return cls(
            slug=str(data["slug"]).lower(),
            name=data.get("name", data["slug"]),
            type=SourceType(data.get("type", SourceType.SCRAPER.value)),
            category=SourceCategory(data.get("category", SourceCategory.VENUE.value)),
            priority=int(data.get("priority", DEFAULT_PRIORITY)),
            trust_score=trust_score,
            enabled=data.get("enabled", True),
            website=data.get("website"),
            venue=data.get("venue"),
            description=data.get("description", ""),
            rate_limit=rate_limit,
            config=data.get("config", {}),
        )


@dataclass
class MergeConfig:
    """
    Tunables for event deduplication and field-level conflict resolution.

    ``manual_staleness_days`` is measured from the manual edit's timestamp.
    """

    title_similarity_threshold: float = 0.7
    same_day_only: bool = True
    showtime_tolerance_hours: float = 2.0
    distinct_showtime_similarity: float = 0.95
    manual_staleness_days: int = 30
    cancel_missing_min_events: int = 3

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> MergeConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        return cls(
            title_similarity_threshold=float(data.get("title_similarity_threshold", 0.7)),
            same_day_only=bool(data.get("same_day_only", True)),
            showtime_tolerance_hours=float(data.get("showtime_tolerance_hours", 2.0)),
            distinct_showtime_similarity=float(data.get("distinct_showtime_similarity", 0.95)),
            manual_staleness_days=int(data.get("manual_staleness_days", 30)),
            cancel_missing_min_events=int(data.get("cancel_missing_min_events", 3)),
        )


@dataclass
class NamespaceConfig:
    """Matching settings for one external namespace."""

    confidence_threshold: float = 0.9
    delay_seconds: float = 0.0
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)

    @classmethod
    def from_dict(
        cls, data: dict[str, Any] | None, defaults: NamespaceConfig
    ) -> NamespaceConfig:
        """Create from dictionary, falling back to namespace defaults."""
        if data is None:
            return defaults
        return cls(
            confidence_threshold=float(
                data.get("confidence_threshold", defaults.confidence_threshold)
            ),
            delay_seconds=float(data.get("delay_seconds", defaults.delay_seconds)),
            rate_limit=(
                RateLimitConfig.from_dict(data["rate_limit"])
                if data.get("rate_limit")
                else defaults.rate_limit
            ),
        )


_NAMESPACE_DEFAULTS = {
    MatchNamespace.MUSICBRAINZ: NamespaceConfig(
        confidence_threshold=0.9,
        delay_seconds=0.1,
        rate_limit=RateLimitConfig(requests_per_second=1 / 1.1, burst_limit=1),
    ),
    MatchNamespace.SPOTIFY: NamespaceConfig(
        confidence_threshold=0.9,
        delay_seconds=0.5,
        rate_limit=RateLimitConfig(requests_per_second=5.0, burst_limit=5),
    ),
}


@dataclass
class MatchingConfig:
    """Configuration for artist identity resolution."""

    batch_limit: int = 50
    search_limit: int = 5
    min_candidate_score: float = 0.3
    namespaces: dict[MatchNamespace, NamespaceConfig] = field(
        default_factory=lambda: dict(_NAMESPACE_DEFAULTS)
    )

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> MatchingConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        return cls(
            batch_limit=int(data.get("batch_limit", 50)),
            search_limit=int(data.get("search_limit", 5)),
            min_candidate_score=float(data.get("min_candidate_score", 0.3)),
            namespaces={
                ns: NamespaceConfig.from_dict(data.get(ns.value), defaults)
                for ns, defaults in _NAMESPACE_DEFAULTS.items()
            },
        )

    def for_namespace(self, namespace: MatchNamespace) -> NamespaceConfig:
        """Settings of one namespace."""
        return self.namespaces.get(namespace, _NAMESPACE_DEFAULTS[namespace])


@dataclass
class PlaylistConfig:
    """Configuration for playlist sync."""

    days_ahead: int = 30
    market: str = "US"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> PlaylistConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        return cls(
            days_ahead=int(data.get("days_ahead", 30)),
            market=data.get("market", "US"),
        )


@dataclass
class GlobalConfig:
    """Global configuration settings."""

    default_rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    user_agent: str = "GigAgent/0.1"
    request_timeout: int = 30
    max_retries: int = 3
    scraper_timeout: int = 180
    max_output_bytes: int = 10_000_000

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> GlobalConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        return cls(
            default_rate_limit=RateLimitConfig.from_dict(data.get("default_rate_limit")),
            user_agent=data.get("user_agent", "GigAgent/0.1"),
            request_timeout=int(data.get("request_timeout", 30)),
            max_retries=int(data.get("max_retries", 3)),
            scraper_timeout=int(data.get("scraper_timeout", 180)),
            max_output_bytes=int(data.get("max_output_bytes", 10_000_000)),
        )


@dataclass
class SyncSummary:
    """Counts of seed records written by ``SourceRegistry.sync_to_db``."""

    regions_created: int = 0
    venues_created: int = 0
    sources_created: int = 0
    sources_updated: int = 0


class SourceRegistry:
    """
    Registry for pipeline configuration and source seed definitions.

    Loads definitions from a YAML file and provides methods to query
    them and to seed the database.
    """

    def __init__(self) -> None:
        self._sources: dict[str, SourceConfig] = {}
        self._regions: list[RegionConfig] = []
        self._venues: list[VenueConfig] = []
        self._global_config: GlobalConfig = GlobalConfig()
        self._merge: MergeConfig = MergeConfig()
        self._matching: MatchingConfig = MatchingConfig()
        self._playlists: PlaylistConfig = PlaylistConfig()
        self._config_path: Path | None = None

    @property
    def global_config(self) -> GlobalConfig:
        """Get global configuration."""
        return self._global_config

    @property
    def merge(self) -> MergeConfig:
        """Get merge engine configuration."""
        return self._merge

    @property
    def matching(self) -> MatchingConfig:
        """Get identity matching configuration."""
        return self._matching

    @property
    def playlists(self) -> PlaylistConfig:
        """Get playlist sync configuration."""
        return self._playlists

    @property
    def config_path(self) -> Path | None:
        """Path the configuration was loaded from."""
        return self._config_path

    def load_config(self, config_path: Path | str) -> None:
        """
        Load configuration from a YAML file.

        Args:
            config_path: Path to the sources.yaml file
        """
        config_path = Path(config_path).expanduser().resolve()
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        self._config_path = config_path
        self._global_config = GlobalConfig.from_dict(data.get("global"))
        self._merge = MergeConfig.from_dict(data.get("merge"))
        self._matching = MatchingConfig.from_dict(data.get("matching"))
        self._playlists = PlaylistConfig.from_dict(data.get("playlists"))
        self._regions = [RegionConfig.from_dict(r) for r in data.get("regions", [])]
        self._venues = [VenueConfig.from_dict(v) for v in data.get("venues", [])]

        self._sources.clear()
        for source_data in data.get("sources", []):
            source = SourceConfig.from_dict(source_data, self._global_config.default_rate_limit)
            self._sources[source.slug] = source

        logger.info(f"Loaded {len(self._sources)} sources from {config_path}")

    def get_source(self, slug: str) -> SourceConfig | None:
        """
        Get a source definition by slug.

        Args:
            slug: Source slug

        Returns:
            SourceConfig if found, None otherwise
        """
        return self._sources.get(slug.lower())

    def list_sources(self) -> list[SourceConfig]:
        """
        Get all source definitions, highest precedence first.

        Returns:
            List of all source configurations
        """
        return sorted(self._sources.values(), key=lambda s: (s.priority, s.slug))

    def list_enabled_sources(self) -> list[SourceConfig]:
        """
        Get all enabled source definitions.

        Returns:
            List of enabled source configurations
        """
        return [s for s in self.list_sources() if s.enabled]

    def sync_to_db(self, session: Session) -> SyncSummary:
        """
        Upsert region, venue and source seeds into the database.

        Existing sources get their configured fields refreshed; enablement,
        run history and versions are left alone.

        Args:
            session: Database session (caller commits)

        Returns:
            SyncSummary with counts of written rows
        """
        summary = SyncSummary()
        region_repo = RegionRepository(session)
        venue_repo = VenueRepository(session)
        source_repo = SourceRepository(session)

        region_timezones: dict[str, str] = {}
        for region_config in self._regions:
            region = region_repo.get_by_slug(region_config.slug)
            if region is None:
                region = region_repo.create(
                    Region(
                        name=region_config.name,
                        slug=region_config.slug,
                        timezone=region_config.timezone,
                    )
                )
                summary.regions_created += 1
            region_timezones[region.slug] = region.timezone

        for venue_config in self._venues:
            if venue_repo.get_by_slug(venue_config.slug) is not None:
                continue
            region = region_repo.get_by_slug(venue_config.region)
            if region is None:
                raise ValidationError(
                    f"Venue '{venue_config.slug}' references unknown region "
                    f"'{venue_config.region}'"
                )
            venue_repo.create(
                Venue(
                    name=venue_config.name,
                    slug=venue_config.slug,
                    region_id=region.id,
                    timezone=venue_config.timezone or region.timezone,
                    website=venue_config.website,
                )
            )
            summary.venues_created += 1

        for source_config in self._sources.values():
            venue_id = None
            if source_config.venue:
                venue = venue_repo.get_by_slug(source_config.venue)
                if venue is None:
                    raise ValidationError(
                        f"Source '{source_config.slug}' references unknown venue "
                        f"'{source_config.venue}'"
                    )
                venue_id = venue.id

            existing = source_repo.get_by_slug(source_config.slug)
            fields = {
                "name": source_config.name,
                "type": source_config.type,
                "category": source_config.category,
                "priority": source_config.priority,
                "trust_score": source_config.trust_score,
                "website": source_config.website,
                "venue_id": venue_id,
                "config": source_config.config,
            }
            if existing is None:
                source_repo.create(
                    Source(slug=source_config.slug, is_active=source_config.enabled, **fields)
                )
                summary.sources_created += 1
            else:
                source_repo.update(existing.model_copy(update=fields))
                summary.sources_updated += 1

        logger.info(
            f"Seeded {summary.regions_created} regions, {summary.venues_created} venues, "
            f"{summary.sources_created} new and {summary.sources_updated} updated sources"
        )
        return summary


# Global registry instance
_default_registry: SourceRegistry | None = None


def get_default_registry() -> SourceRegistry:
    """
    Get the default source registry instance.

    Loads configuration from the path specified in SOURCES_CONFIG_PATH
    environment variable, or falls back to config/sources.yaml.

    Returns:
        The global SourceRegistry instance
    """
    global _default_registry

    if _default_registry is None:
        _default_registry = SourceRegistry()

        config_path = os.environ.get("SOURCES_CONFIG_PATH")
        if config_path:
            path = Path(config_path)
        else:
            # Default to config/sources.yaml relative to project root
            module_dir = Path(__file__).parent
            project_root = module_dir.parent.parent
            path = project_root / "config" / "sources.yaml"

        if path.exists():
            _default_registry.load_config(path)

    return _default_registry


def reset_default_registry() -> None:
    """Reset the default registry (useful for testing)."""
    global _default_registry
    _default_registry = None
