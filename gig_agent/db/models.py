"""SQLAlchemy ORM models for the gig catalog database.

Tables:
- RegionDB, VenueDB (places)
- SourceDB, ScraperVersionDB, IngestionRunDB (ingestion)
- EventDB, EventSourceDB, FieldProvenanceDB, EventArtistDB (catalog)
- ArtistDB (identity)
- PlaylistDB, PlaylistTrackDB (playlist sync)
- LeaseDB (cross-process operation locks)
"""

from datetime import UTC, datetime
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


def _generate_uuid() -> str:
    """Generate a UUID string."""
    return str(uuid4())


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ============================================================================
# Places
# ============================================================================


class RegionDB(Base):
    """Database model for regions."""

    __tablename__ = "regions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    timezone: Mapped[str] = mapped_column(String(64), default="America/New_York")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)

    venues: Mapped[list["VenueDB"]] = relationship("VenueDB", back_populates="region")

    def __repr__(self) -> str:
        return f"<RegionDB(id={self.id}, slug='{self.slug}')>"


class VenueDB(Base):
    """Database model for venues."""

    __tablename__ = "venues"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    region_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("regions.id"), nullable=False, index=True
    )
    timezone: Mapped[str] = mapped_column(String(64), default="America/New_York")
    website: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)

    region: Mapped["RegionDB"] = relationship("RegionDB", back_populates="venues")

    def __repr__(self) -> str:
        return f"<VenueDB(id={self.id}, slug='{self.slug}')>"


# ============================================================================
# Ingestion
# ============================================================================


class SourceDB(Base):
    """
    Database model for event sources.

    Sources are never hard-deleted; ``is_active`` soft-disables them.
    """

    __tablename__ = "sources"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), default="")
    type: Mapped[str] = mapped_column(String(20), default="scraper")
    category: Mapped[str] = mapped_column(String(20), default="venue")
    priority: Mapped[int] = mapped_column(Integer, default=50)
    trust_score: Mapped[float] = mapped_column(Float, default=0.8)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    website: Mapped[str | None] = mapped_column(String(500), nullable=True)
    venue_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("venues.id"), nullable=True, index=True
    )
    config_json: Mapped[str] = mapped_column(Text, default="{}")  # JSON object
    last_run_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_run_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    last_run_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)

    versions: Mapped[list["ScraperVersionDB"]] = relationship(
        "ScraperVersionDB",
        back_populates="source",
        cascade="all, delete-orphan",
        order_by="ScraperVersionDB.version_number",
    )

    def __repr__(self) -> str:
        return f"<SourceDB(id={self.id}, slug='{self.slug}', priority={self.priority})>"


class ScraperVersionDB(Base):
    """
    Database model for scraper versions.

    Code is immutable once written. The partial unique index allows at most
    one active version per source.
    """

    __tablename__ = "scraper_versions"
    __table_args__ = (
        UniqueConstraint("source_id", "version_number", name="uq_scraper_version_number"),
        Index(
            "uq_scraper_version_active",
            "source_id",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    source_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("sources.id", ondelete="CASCADE"), nullable=False, index=True
    )
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)
    code: Mapped[str] = mapped_column(Text, nullable=False)
    code_hash: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    origin: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)
    last_tested_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    test_results_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)

    source: Mapped["SourceDB"] = relationship("SourceDB", back_populates="versions")

    def __repr__(self) -> str:
        return (
            f"<ScraperVersionDB(source_id={self.source_id}, "
            f"v{self.version_number}, active={self.is_active})>"
        )


class IngestionRunDB(Base):
    """Database model for the history of production ingestion runs."""

    __tablename__ = "ingestion_runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    source_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("sources.id"), nullable=False, index=True
    )
    version_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="running")
    started_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    event_count: Mapped[int] = mapped_column(Integer, default=0)
    created_count: Mapped[int] = mapped_column(Integer, default=0)
    updated_count: Mapped[int] = mapped_column(Integer, default=0)
    dropped_count: Mapped[int] = mapped_column(Integer, default=0)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<IngestionRunDB(source_id={self.source_id}, status='{self.status}')>"


# ============================================================================
# Catalog
# ============================================================================


class EventDB(Base):
    """
    Database model for canonical events.

    ``region_id`` is denormalized from the venue; ``field_owners_json`` maps
    each scalar field to the source that supplied its value.
    """

    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    slug: Mapped[str] = mapped_column(String(120), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    starts_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    has_time: Mapped[bool] = mapped_column(Boolean, default=True)
    venue_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("venues.id"), nullable=False, index=True
    )
    region_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("regions.id"), nullable=False, index=True
    )
    source_id: Mapped[str] = mapped_column(String(36), ForeignKey("sources.id"), nullable=False)
    source_url: Mapped[str] = mapped_column(String(1000), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    cover_charge: Mapped[str | None] = mapped_column(String(100), nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    doors_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    ends_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    ticket_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    age_restriction: Mapped[str | None] = mapped_column(String(50), nullable=True)
    genres_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON array
    field_owners_json: Mapped[str] = mapped_column(Text, default="{}")  # JSON object
    is_cancelled: Mapped[bool] = mapped_column(Boolean, default=False)
    attending_count: Mapped[int] = mapped_column(Integer, default=0)
    interested_count: Mapped[int] = mapped_column(Integer, default=0)
    manually_edited_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)

    venue: Mapped["VenueDB"] = relationship("VenueDB")
    sources: Mapped[list["EventSourceDB"]] = relationship(
        "EventSourceDB", back_populates="event", cascade="all, delete-orphan"
    )
    artists: Mapped[list["EventArtistDB"]] = relationship(
        "EventArtistDB",
        back_populates="event",
        cascade="all, delete-orphan",
        order_by="EventArtistDB.position",
    )

    def __repr__(self) -> str:
        return f"<EventDB(id={self.id}, title='{self.title[:40]}')>"


class EventSourceDB(Base):
    """Database model linking an event to every source that reported it."""

    __tablename__ = "event_sources"
    __table_args__ = (UniqueConstraint("event_id", "source_id", name="uq_event_source"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    event_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True
    )
    source_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("sources.id"), nullable=False, index=True
    )
    source_url: Mapped[str] = mapped_column(String(1000), nullable=False, index=True)
    source_event_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    raw_data_json: Mapped[str] = mapped_column(Text, default="{}")  # JSON object
    first_seen_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)

    event: Mapped["EventDB"] = relationship("EventDB", back_populates="sources")

    def __repr__(self) -> str:
        return f"<EventSourceDB(event_id={self.event_id}, source_id={self.source_id})>"


class FieldProvenanceDB(Base):
    """Database model attributing list-field items to their source."""

    __tablename__ = "field_provenance"
    __table_args__ = (
        UniqueConstraint("event_id", "field", "value", name="uq_field_provenance_item"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    event_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True
    )
    field: Mapped[str] = mapped_column(String(50), nullable=False)
    value: Mapped[str] = mapped_column(String(255), nullable=False)
    source_id: Mapped[str] = mapped_column(String(36), ForeignKey("sources.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)

    def __repr__(self) -> str:
        return f"<FieldProvenanceDB(event_id={self.event_id}, {self.field}='{self.value}')>"


class EventArtistDB(Base):
    """Database model for the ordered lineup of an event."""

    __tablename__ = "event_artists"
    __table_args__ = (UniqueConstraint("event_id", "artist_id", name="uq_event_artist"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    event_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True
    )
    artist_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("artists.id"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, default=0)

    event: Mapped["EventDB"] = relationship("EventDB", back_populates="artists")
    artist: Mapped["ArtistDB"] = relationship("ArtistDB")


# ============================================================================
# Identity
# ============================================================================


class ArtistDB(Base):
    """Database model for artists with per-namespace match state."""

    __tablename__ = "artists"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    normalized_name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    musicbrainz_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    musicbrainz_status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    musicbrainz_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    musicbrainz_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    musicbrainz_tags_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON array
    musicbrainz_matched_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    musicbrainz_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    spotify_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    spotify_status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    spotify_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    spotify_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    spotify_genres_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON array
    spotify_popularity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    spotify_matched_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    spotify_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)

    def __repr__(self) -> str:
        return f"<ArtistDB(id={self.id}, name='{self.name}')>"


# ============================================================================
# Playlists
# ============================================================================


class PlaylistDB(Base):
    """Database model for managed streaming playlists."""

    __tablename__ = "playlists"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    spotify_playlist_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    region_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("regions.id"), nullable=True
    )
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    days_ahead: Mapped[int] = mapped_column(Integer, default=30)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_sync_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)

    tracks: Mapped[list["PlaylistTrackDB"]] = relationship(
        "PlaylistTrackDB",
        back_populates="playlist",
        cascade="all, delete-orphan",
        order_by="PlaylistTrackDB.position",
    )

    def __repr__(self) -> str:
        return f"<PlaylistDB(id={self.id}, name='{self.name}')>"


class PlaylistTrackDB(Base):
    """Database model for tracks currently placed on a playlist."""

    __tablename__ = "playlist_tracks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    playlist_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("playlists.id", ondelete="CASCADE"), nullable=False, index=True
    )
    track_uri: Mapped[str] = mapped_column(String(100), nullable=False)
    artist_id: Mapped[str] = mapped_column(String(36), ForeignKey("artists.id"), nullable=False)
    event_id: Mapped[str] = mapped_column(String(36), ForeignKey("events.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0)
    added_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)

    playlist: Mapped["PlaylistDB"] = relationship("PlaylistDB", back_populates="tracks")


# ============================================================================
# Coordination
# ============================================================================


class LeaseDB(Base):
    """
    Database model for operation leases.

    One row per held key (e.g. ``source:<id>``). A lease past ``expires_at``
    belongs to a crashed holder and may be taken over.
    """

    __tablename__ = "leases"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    owner: Mapped[str] = mapped_column(String(100), nullable=False)
    operation: Mapped[str] = mapped_column(String(50), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    def __repr__(self) -> str:
        return f"<LeaseDB(key='{self.key}', operation='{self.operation}')>"
