"""Pydantic v2 domain models for the event catalog.

These models define the entities passed between the pipeline stages:
- Region, Venue (places)
- Source, ScraperVersion, VersionTestResults, FieldsAnalysis (ingestion)
- ScrapedEvent (transient observation), Event, EventSource, FieldProvenance (catalog)
- Artist, MatchingStats (identity resolution)
- Playlist, PlaylistTrack (playlist sync)
"""

from datetime import UTC, datetime
from typing import Annotated, Any
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator

from gig_agent.core.enums import (
    MatchNamespace,
    MatchStatus,
    RunStatus,
    SourceCategory,
    SourceType,
    VersionOrigin,
)


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


DEFAULT_PRIORITY = 50
DEFAULT_TRUST_SCORE = 0.8


# ============================================================================
# Places
# ============================================================================


class Region(BaseModel):
    """A geographic region grouping venues."""

    id: UUID = Field(default_factory=uuid4)
    name: str
    slug: str
    timezone: str = "America/New_York"
    created_at: datetime = Field(default_factory=_utc_now)

    @field_validator("name", "slug")
    @classmethod
    def not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("value cannot be empty")
        return v.strip()


class Venue(BaseModel):
    """A place where events happen. Its timezone decides calendar days."""

    id: UUID = Field(default_factory=uuid4)
    name: str
    slug: str
    region_id: UUID
    timezone: str = "America/New_York"
    website: str | None = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)

    @field_validator("name", "slug")
    @classmethod
    def not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("value cannot be empty")
        return v.strip()


# ============================================================================
# Ingestion
# ============================================================================


class Source(BaseModel):
    """
    A configured origin of event data.

    Lower ``priority`` numbers win field conflicts; ``trust_score`` only
    breaks ties between equal priorities.
    """

    id: UUID = Field(default_factory=uuid4)
    slug: str
    name: str = ""
    type: SourceType = SourceType.SCRAPER
    category: SourceCategory = SourceCategory.VENUE
    priority: int = DEFAULT_PRIORITY
    trust_score: Annotated[float, Field(ge=0.0, le=1.0)] = DEFAULT_TRUST_SCORE
    is_active: bool = True
    website: str | None = None
    venue_id: UUID | None = None
    config: dict[str, Any] = Field(default_factory=dict)
    last_run_at: datetime | None = None
    last_run_status: RunStatus | None = None
    last_run_error: str | None = None
    active_version_number: int | None = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)

    @field_validator("slug")
    @classmethod
    def slug_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("slug cannot be empty")
        return v.strip().lower()


class FieldCoverage(BaseModel):
    """How many events in a test run populated one field."""

    field: str
    count: int = 0
    percentage: float = 0.0
    required: bool = False


class FieldsAnalysis(BaseModel):
    """Per-field coverage of a scraper's output."""

    total_events: int = 0
    coverage: list[FieldCoverage] = Field(default_factory=list)
    required_coverage: float = 0.0
    optional_coverage: float = 0.0
    completeness: float = 0.0

    def missing_fields(self) -> list[str]:
        """Fields populated on fewer than all events."""
        return [c.field for c in self.coverage if c.percentage < 100.0]


class VersionTestResults(BaseModel):
    """Outcome of testing a scraper version. Never produced by production runs."""

    success: bool
    error: str | None = None
    execution_time_ms: int = 0
    event_count: int = 0
    sample_events: list[dict[str, Any]] = Field(default_factory=list)
    fields_analysis: FieldsAnalysis | None = None
    warnings: list[str] = Field(default_factory=list)


class ScraperVersion(BaseModel):
    """An immutable, numbered snapshot of a source's scraper code."""

    id: UUID = Field(default_factory=uuid4)
    source_id: UUID
    version_number: Annotated[int, Field(ge=1)]
    code: str
    code_hash: str
    origin: VersionOrigin
    description: str | None = None
    is_active: bool = False
    last_tested_at: datetime | None = None
    test_results: VersionTestResults | None = None
    created_at: datetime = Field(default_factory=_utc_now)


class IngestionRun(BaseModel):
    """History record of one production ingestion run."""

    id: UUID = Field(default_factory=uuid4)
    source_id: UUID
    version_id: UUID | None = None
    status: RunStatus = RunStatus.RUNNING
    started_at: datetime = Field(default_factory=_utc_now)
    finished_at: datetime | None = None
    event_count: int = 0
    created_count: int = 0
    updated_count: int = 0
    dropped_count: int = 0
    error: str | None = None


# ============================================================================
# Catalog
# ============================================================================


class ScrapedEvent(BaseModel):
    """
    One observation of an event by one source in one run, before merging.

    Keys that were absent from the scraper output are not in
    ``model_fields_set``; an explicit ``None`` means the source reported
    the field as empty.
    """

    title: str = ""
    starts_at: datetime | None = None
    has_time: bool = True
    source_url: str = ""
    source_event_id: str | None = None
    venue_name: str | None = None
    description: str | None = None
    cover_charge: str | None = None
    image_url: str | None = None
    doors_at: datetime | None = None
    ends_at: datetime | None = None
    ticket_url: str | None = None
    age_restriction: str | None = None
    genres: list[str] = Field(default_factory=list)
    artists: list[str] = Field(default_factory=list)
    raw: dict[str, Any] = Field(default_factory=dict, exclude=True)

    def validation_errors(self) -> list[str]:
        """Problems that make this record unusable for merging."""
        errors = []
        if not self.title.strip():
            errors.append("missing title")
        if not self.source_url.strip():
            errors.append("missing sourceUrl")
        if self.starts_at is None:
            errors.append("missing startsAt")
        return errors


class FieldOwner(BaseModel):
    """The source whose value a canonical field currently holds."""

    source_id: UUID
    priority: int
    trust_score: float
    observed_at: datetime
    manual: bool = False


class Event(BaseModel):
    """The single reconciled record for a real-world event."""

    id: UUID = Field(default_factory=uuid4)
    slug: str
    title: str
    starts_at: datetime
    has_time: bool = True
    venue_id: UUID
    region_id: UUID
    source_id: UUID
    source_url: str
    description: str | None = None
    cover_charge: str | None = None
    image_url: str | None = None
    doors_at: datetime | None = None
    ends_at: datetime | None = None
    ticket_url: str | None = None
    age_restriction: str | None = None
    genres: list[str] = Field(default_factory=list)
    artist_ids: list[UUID] = Field(default_factory=list)
    field_owners: dict[str, FieldOwner] = Field(default_factory=dict)
    is_cancelled: bool = False
    attending_count: int = 0
    interested_count: int = 0
    manually_edited_at: datetime | None = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class EventSource(BaseModel):
    """Provenance of a source's observation of an event."""

    id: UUID = Field(default_factory=uuid4)
    event_id: UUID
    source_id: UUID
    source_url: str
    source_event_id: str | None = None
    raw_data: dict[str, Any] = Field(default_factory=dict)
    first_seen_at: datetime = Field(default_factory=_utc_now)
    last_seen_at: datetime = Field(default_factory=_utc_now)


class FieldProvenance(BaseModel):
    """Attribution of one list-field item (a genre or artist) to its source."""

    id: UUID = Field(default_factory=uuid4)
    event_id: UUID
    field: str
    value: str
    source_id: UUID
    created_at: datetime = Field(default_factory=_utc_now)


# ============================================================================
# Identity
# ============================================================================


class Artist(BaseModel):
    """
    A performer referenced by events.

    Each external namespace keeps its own id, status and metadata so an
    artist can be matched in one and still pending in the other.
    """

    id: UUID = Field(default_factory=uuid4)
    name: str

    musicbrainz_id: str | None = None
    musicbrainz_status: MatchStatus = MatchStatus.PENDING
    musicbrainz_confidence: float | None = None
    musicbrainz_name: str | None = None
    musicbrainz_tags: list[str] = Field(default_factory=list)
    musicbrainz_matched_at: datetime | None = None
    musicbrainz_error: str | None = None

    spotify_id: str | None = None
    spotify_status: MatchStatus = MatchStatus.PENDING
    spotify_confidence: float | None = None
    spotify_name: str | None = None
    spotify_genres: list[str] = Field(default_factory=list)
    spotify_popularity: int | None = None
    spotify_matched_at: datetime | None = None
    spotify_error: str | None = None

    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)

    @field_validator("name")
    @classmethod
    def name_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name cannot be empty")
        return v.strip()

    def status_for(self, namespace: MatchNamespace) -> MatchStatus:
        """Match status in one namespace."""
        return getattr(self, f"{namespace.value}_status")

    def external_id_for(self, namespace: MatchNamespace) -> str | None:
        """External identifier in one namespace, if matched."""
        return getattr(self, f"{namespace.value}_id")


class MatchingStats(BaseModel):
    """Counts of artists by match status in one namespace."""

    namespace: MatchNamespace
    total: int = 0
    pending: int = 0
    matched: int = 0
    no_match: int = 0


# ============================================================================
# Playlists
# ============================================================================


class PlaylistTrack(BaseModel):
    """A track placed on a managed playlist for an upcoming show."""

    id: UUID = Field(default_factory=uuid4)
    playlist_id: UUID
    track_uri: str
    artist_id: UUID
    event_id: UUID
    position: int = 0
    added_at: datetime = Field(default_factory=_utc_now)


class Playlist(BaseModel):
    """A streaming playlist kept in sync with upcoming shows."""

    id: UUID = Field(default_factory=uuid4)
    name: str
    spotify_playlist_id: str
    region_id: UUID | None = None
    enabled: bool = True
    days_ahead: Annotated[int, Field(ge=1)] = 30
    last_synced_at: datetime | None = None
    last_sync_error: str | None = None
    tracks: list[PlaylistTrack] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utc_now)
