"""Repository classes for catalog database operations."""

import json
import re
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import Engine, delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gig_agent.core.enums import (
    MatchNamespace,
    MatchStatus,
    RunStatus,
    SourceCategory,
    SourceType,
    VersionOrigin,
)
from gig_agent.core.errors import NotFoundError
from gig_agent.core.schema import (
    Artist,
    Event,
    EventSource,
    FieldOwner,
    FieldProvenance,
    IngestionRun,
    MatchingStats,
    Playlist,
    PlaylistTrack,
    Region,
    ScraperVersion,
    Source,
    VersionTestResults,
    Venue,
)
from gig_agent.db.models import (
    ArtistDB,
    EventArtistDB,
    EventDB,
    EventSourceDB,
    FieldProvenanceDB,
    IngestionRunDB,
    LeaseDB,
    PlaylistDB,
    PlaylistTrackDB,
    RegionDB,
    ScraperVersionDB,
    SourceDB,
    VenueDB,
)


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from the database."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def artist_key(name: str) -> str:
    """Case- and whitespace-insensitive lookup key for artist names."""
    return re.sub(r"\s+", " ", name).strip().lower()


# ============================================================================
# Places
# ============================================================================


class RegionRepository:
    """Repository for Region operations."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, region: Region) -> Region:
        """Create a new region."""
        db_item = RegionDB(
            id=str(region.id),
            name=region.name,
            slug=region.slug,
            timezone=region.timezone,
            created_at=region.created_at,
        )
        self.session.add(db_item)
        self.session.flush()
        return self._to_domain(db_item)

    def get_by_id(self, region_id: UUID | str) -> Region | None:
        """Get a region by ID."""
        db_item = self.session.get(RegionDB, str(region_id))
        return self._to_domain(db_item) if db_item else None

    def get_by_slug(self, slug: str) -> Region | None:
        """Get a region by slug."""
        stmt = select(RegionDB).where(RegionDB.slug == slug)
        db_item = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(db_item) if db_item else None

    def _to_domain(self, db_item: RegionDB) -> Region:
        return Region(
            id=UUID(db_item.id),
            name=db_item.name,
            slug=db_item.slug,
            timezone=db_item.timezone,
            created_at=as_utc(db_item.created_at),
        )


class VenueRepository:
    """Repository for Venue operations."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, venue: Venue) -> Venue:
        """Create a new venue."""
        db_item = VenueDB(
            id=str(venue.id),
            name=venue.name,
            slug=venue.slug,
            region_id=str(venue.region_id),
            timezone=venue.timezone,
            website=venue.website,
            created_at=venue.created_at,
            updated_at=venue.updated_at,
        )
        self.session.add(db_item)
        self.session.flush()
        return self._to_domain(db_item)

    def get_by_id(self, venue_id: UUID | str) -> Venue | None:
        """Get a venue by ID."""
        db_item = self.session.get(VenueDB, str(venue_id))
        return self._to_domain(db_item) if db_item else None

    def get_by_slug(self, slug: str) -> Venue | None:
        """Get a venue by slug."""
        stmt = select(VenueDB).where(VenueDB.slug == slug)
        db_item = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(db_item) if db_item else None

    def find_by_name(self, name: str) -> Venue | None:
        """Find a venue by exact name (case-insensitive) or slug."""
        cleaned = name.strip()
        stmt = select(VenueDB).where(
            (func.lower(VenueDB.name) == cleaned.lower()) | (VenueDB.slug == cleaned.lower())
        )
        db_item = self.session.execute(stmt).scalars().first()
        return self._to_domain(db_item) if db_item else None

    def update_region(self, venue_id: UUID | str, region_id: UUID | str) -> Venue:
        """Move a venue to another region."""
        db_item = self.session.get(VenueDB, str(venue_id))
        if db_item is None:
            raise NotFoundError("Venue", str(venue_id))
        db_item.region_id = str(region_id)
        db_item.updated_at = _utc_now()
        self.session.flush()
        return self._to_domain(db_item)

    def _to_domain(self, db_item: VenueDB) -> Venue:
        return Venue(
            id=UUID(db_item.id),
            name=db_item.name,
            slug=db_item.slug,
            region_id=UUID(db_item.region_id),
            timezone=db_item.timezone,
            website=db_item.website,
            created_at=as_utc(db_item.created_at),
            updated_at=as_utc(db_item.updated_at),
        )


# ============================================================================
# Ingestion
# ============================================================================


class SourceRepository:
    """Repository for Source operations."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, source: Source) -> Source:
        """Create a new source."""
        db_item = SourceDB(
            id=str(source.id),
            slug=source.slug,
            name=source.name,
            type=source.type.value,
            category=source.category.value,
            priority=source.priority,
            trust_score=source.trust_score,
            is_active=source.is_active,
            website=source.website,
            venue_id=str(source.venue_id) if source.venue_id else None,
            config_json=json.dumps(source.config),
            created_at=source.created_at,
            updated_at=source.updated_at,
        )
        self.session.add(db_item)
        self.session.flush()
        return self._to_domain(db_item)

    def get_by_id(self, source_id: UUID | str) -> Source | None:
        """Get a source by ID."""
        db_item = self.session.get(SourceDB, str(source_id))
        return self._to_domain(db_item) if db_item else None

    def get_by_slug(self, slug: str) -> Source | None:
        """Get a source by slug."""
        stmt = select(SourceDB).where(SourceDB.slug == slug.lower())
        db_item = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(db_item) if db_item else None

    def require(self, source_id: UUID | str) -> Source:
        """Get a source by ID or raise NotFoundError."""
        source = self.get_by_id(source_id)
        if source is None:
            raise NotFoundError("Source", str(source_id))
        return source

    def list_all(self, active_only: bool = False) -> list[Source]:
        """List sources ordered by priority then slug."""
        stmt = select(SourceDB).order_by(SourceDB.priority, SourceDB.slug)
        if active_only:
            stmt = stmt.where(SourceDB.is_active.is_(True))
        return [self._to_domain(s) for s in self.session.execute(stmt).scalars().all()]

    def update(self, source: Source) -> Source:
        """Update the configurable fields of an existing source."""
        db_item = self.session.get(SourceDB, str(source.id))
        if db_item is None:
            raise NotFoundError("Source", str(source.id))

        db_item.name = source.name
        db_item.type = source.type.value
        db_item.category = source.category.value
        db_item.priority = source.priority
        db_item.trust_score = source.trust_score
        db_item.is_active = source.is_active
        db_item.website = source.website
        db_item.venue_id = str(source.venue_id) if source.venue_id else None
        db_item.config_json = json.dumps(source.config)
        db_item.updated_at = _utc_now()

        self.session.flush()
        return self._to_domain(db_item)

    def set_active(self, source_id: UUID | str, is_active: bool) -> Source:
        """Soft-enable or soft-disable a source."""
        db_item = self.session.get(SourceDB, str(source_id))
        if db_item is None:
            raise NotFoundError("Source", str(source_id))
        db_item.is_active = is_active
        db_item.updated_at = _utc_now()
        self.session.flush()
        return self._to_domain(db_item)

    def record_run(
        self,
        source_id: UUID | str,
        status: RunStatus,
        error: str | None = None,
        run_at: datetime | None = None,
    ) -> None:
        """Stamp the outcome of the latest run on the source."""
        db_item = self.session.get(SourceDB, str(source_id))
        if db_item is None:
            raise NotFoundError("Source", str(source_id))
        db_item.last_run_at = run_at or _utc_now()
        db_item.last_run_status = status.value
        db_item.last_run_error = error
        self.session.flush()

    def _to_domain(self, db_item: SourceDB) -> Source:
        active_number = self.session.execute(
            select(ScraperVersionDB.version_number).where(
                ScraperVersionDB.source_id == db_item.id,
                ScraperVersionDB.is_active.is_(True),
            )
        ).scalar_one_or_none()
        return Source(
            id=UUID(db_item.id),
            slug=db_item.slug,
            name=db_item.name,
            type=SourceType(db_item.type),
            category=SourceCategory(db_item.category),
            priority=db_item.priority,
            trust_score=db_item.trust_score,
            is_active=db_item.is_active,
            website=db_item.website,
            venue_id=UUID(db_item.venue_id) if db_item.venue_id else None,
            config=json.loads(db_item.config_json or "{}"),
            last_run_at=as_utc(db_item.last_run_at),
            last_run_status=RunStatus(db_item.last_run_status) if db_item.last_run_status else None,
            last_run_error=db_item.last_run_error,
            active_version_number=active_number,
            created_at=as_utc(db_item.created_at),
            updated_at=as_utc(db_item.updated_at),
        )


class ScraperVersionRepository:
    """Repository for ScraperVersion operations. Version code is never updated."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, version: ScraperVersion) -> ScraperVersion:
        """Insert a new, inactive version."""
        db_item = ScraperVersionDB(
            id=str(version.id),
            source_id=str(version.source_id),
            version_number=version.version_number,
            code=version.code,
            code_hash=version.code_hash,
            origin=version.origin.value,
            description=version.description,
            is_active=False,
            created_at=version.created_at,
        )
        self.session.add(db_item)
        self.session.flush()
        return self._to_domain(db_item)

    def get_by_id(self, version_id: UUID | str) -> ScraperVersion | None:
        """Get a version by ID."""
        db_item = self.session.get(ScraperVersionDB, str(version_id))
        return self._to_domain(db_item) if db_item else None

    def get_for_source(self, source_id: UUID | str, version_id: UUID | str) -> ScraperVersion:
        """Get a version that must belong to the given source."""
        db_item = self.session.get(ScraperVersionDB, str(version_id))
        if db_item is None or db_item.source_id != str(source_id):
            raise NotFoundError("ScraperVersion", str(version_id))
        return self._to_domain(db_item)

    def get_active(self, source_id: UUID | str) -> ScraperVersion | None:
        """Get the active version of a source, if any."""
        stmt = select(ScraperVersionDB).where(
            ScraperVersionDB.source_id == str(source_id),
            ScraperVersionDB.is_active.is_(True),
        )
        db_item = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(db_item) if db_item else None

    def list_by_source(self, source_id: UUID | str) -> list[ScraperVersion]:
        """List versions of a source, newest first."""
        stmt = (
            select(ScraperVersionDB)
            .where(ScraperVersionDB.source_id == str(source_id))
            .order_by(ScraperVersionDB.version_number.desc())
        )
        return [self._to_domain(v) for v in self.session.execute(stmt).scalars().all()]

    def next_version_number(self, source_id: UUID | str) -> int:
        """Return max(version_number) + 1 for the source."""
        stmt = select(func.max(ScraperVersionDB.version_number)).where(
            ScraperVersionDB.source_id == str(source_id)
        )
        current = self.session.execute(stmt).scalar()
        return (current or 0) + 1

    def set_active(self, source_id: UUID | str, version_id: UUID | str) -> ScraperVersion:
        """
        Make one version active and every sibling inactive.

        Siblings are cleared and flushed first so the one-active-per-source
        index never sees two active rows.
        """
        target = self.session.get(ScraperVersionDB, str(version_id))
        if target is None or target.source_id != str(source_id):
            raise NotFoundError("ScraperVersion", str(version_id))

        stmt = select(ScraperVersionDB).where(
            ScraperVersionDB.source_id == str(source_id),
            ScraperVersionDB.is_active.is_(True),
            ScraperVersionDB.id != target.id,
        )
        for sibling in self.session.execute(stmt).scalars().all():
            sibling.is_active = False
        self.session.flush()

        target.is_active = True
        self.session.flush()
        return self._to_domain(target)

    def record_test(
        self,
        version_id: UUID | str,
        results: VersionTestResults,
        tested_at: datetime | None = None,
    ) -> ScraperVersion:
        """Store test results on a version. Code and activation are untouched."""
        db_item = self.session.get(ScraperVersionDB, str(version_id))
        if db_item is None:
            raise NotFoundError("ScraperVersion", str(version_id))
        db_item.last_tested_at = tested_at or _utc_now()
        db_item.test_results_json = results.model_dump_json()
        self.session.flush()
        return self._to_domain(db_item)

    def _to_domain(self, db_item: ScraperVersionDB) -> ScraperVersion:
        return ScraperVersion(
            id=UUID(db_item.id),
            source_id=UUID(db_item.source_id),
            version_number=db_item.version_number,
            code=db_item.code,
            code_hash=db_item.code_hash,
            origin=VersionOrigin(db_item.origin),
            description=db_item.description,
            is_active=db_item.is_active,
            last_tested_at=as_utc(db_item.last_tested_at),
            test_results=(
                VersionTestResults.model_validate_json(db_item.test_results_json)
                if db_item.test_results_json
                else None
            ),
            created_at=as_utc(db_item.created_at),
        )


class IngestionRunRepository:
    """Repository for ingestion run history."""

    def __init__(self, session: Session):
        self.session = session

    def save(self, run: IngestionRun) -> IngestionRun:
        """Insert or update a run record."""
        db_item = self.session.get(IngestionRunDB, str(run.id))
        if db_item is None:
            db_item = IngestionRunDB(id=str(run.id), source_id=str(run.source_id))
            self.session.add(db_item)
        db_item.version_id = str(run.version_id) if run.version_id else None
        db_item.status = run.status.value
        db_item.started_at = run.started_at
        db_item.finished_at = run.finished_at
        db_item.event_count = run.event_count
        db_item.created_count = run.created_count
        db_item.updated_count = run.updated_count
        db_item.dropped_count = run.dropped_count
        db_item.error = run.error
        self.session.flush()
        return run

    def list_by_source(self, source_id: UUID | str, limit: int = 20) -> list[IngestionRun]:
        """Most recent runs of a source, newest first."""
        stmt = (
            select(IngestionRunDB)
            .where(IngestionRunDB.source_id == str(source_id))
            .order_by(IngestionRunDB.started_at.desc())
            .limit(limit)
        )
        return [
            IngestionRun(
                id=UUID(r.id),
                source_id=UUID(r.source_id),
                version_id=UUID(r.version_id) if r.version_id else None,
                status=RunStatus(r.status),
                started_at=as_utc(r.started_at),
                finished_at=as_utc(r.finished_at),
                event_count=r.event_count,
                created_count=r.created_count,
                updated_count=r.updated_count,
                dropped_count=r.dropped_count,
                error=r.error,
            )
            for r in self.session.execute(stmt).scalars().all()
        ]


# ============================================================================
# Catalog
# ============================================================================


class EventRepository:
    """Read access to canonical events and their provenance."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, event_id: UUID | str) -> Event | None:
        """Get an event by ID."""
        db_item = self.session.get(EventDB, str(event_id))
        return self.to_domain(db_item) if db_item else None

    def list_upcoming(
        self,
        start: datetime,
        end: datetime,
        region_id: UUID | str | None = None,
        include_cancelled: bool = False,
    ) -> list[Event]:
        """Events starting within [start, end], soonest first."""
        stmt = (
            select(EventDB)
            .where(EventDB.starts_at >= start, EventDB.starts_at <= end)
            .order_by(EventDB.starts_at, EventDB.id)
        )
        if region_id is not None:
            stmt = stmt.where(EventDB.region_id == str(region_id))
        if not include_cancelled:
            stmt = stmt.where(EventDB.is_cancelled.is_(False))
        return [self.to_domain(e) for e in self.session.execute(stmt).scalars().all()]

    def list_by_venue(self, venue_id: UUID | str) -> list[Event]:
        """All events at a venue, soonest first."""
        stmt = (
            select(EventDB)
            .where(EventDB.venue_id == str(venue_id))
            .order_by(EventDB.starts_at, EventDB.id)
        )
        return [self.to_domain(e) for e in self.session.execute(stmt).scalars().all()]

    def count(self) -> int:
        """Get total count of events."""
        stmt = select(func.count()).select_from(EventDB)
        return self.session.execute(stmt).scalar() or 0

    def get_sources(self, event_id: UUID | str) -> list[EventSource]:
        """Every source observation of an event."""
        stmt = (
            select(EventSourceDB)
            .where(EventSourceDB.event_id == str(event_id))
            .order_by(EventSourceDB.first_seen_at)
        )
        return [
            EventSource(
                id=UUID(s.id),
                event_id=UUID(s.event_id),
                source_id=UUID(s.source_id),
                source_url=s.source_url,
                source_event_id=s.source_event_id,
                raw_data=json.loads(s.raw_data_json or "{}"),
                first_seen_at=as_utc(s.first_seen_at),
                last_seen_at=as_utc(s.last_seen_at),
            )
            for s in self.session.execute(stmt).scalars().all()
        ]

    def get_field_provenance(
        self, event_id: UUID | str, field: str | None = None
    ) -> list[FieldProvenance]:
        """Attribution of list-field items for an event."""
        stmt = (
            select(FieldProvenanceDB)
            .where(FieldProvenanceDB.event_id == str(event_id))
            .order_by(FieldProvenanceDB.field, FieldProvenanceDB.created_at)
        )
        if field is not None:
            stmt = stmt.where(FieldProvenanceDB.field == field)
        return [
            FieldProvenance(
                id=UUID(p.id),
                event_id=UUID(p.event_id),
                field=p.field,
                value=p.value,
                source_id=UUID(p.source_id),
                created_at=as_utc(p.created_at),
            )
            for p in self.session.execute(stmt).scalars().all()
        ]

    def find_region_drift(self) -> list[tuple[str, str]]:
        """(event id, venue region id) pairs whose region_id disagrees with the venue."""
        stmt = (
            select(EventDB.id, VenueDB.region_id)
            .join(VenueDB, EventDB.venue_id == VenueDB.id)
            .where(EventDB.region_id != VenueDB.region_id)
        )
        return [(row[0], row[1]) for row in self.session.execute(stmt).all()]

    def backfill_region_ids(self) -> int:
        """
        Reset every event's region_id to its venue's region.

        Returns:
            Number of events corrected.
        """
        drift = self.find_region_drift()
        for event_id, region_id in drift:
            db_item = self.session.get(EventDB, event_id)
            db_item.region_id = region_id
        self.session.flush()
        return len(drift)

    def to_domain(self, db_item: EventDB) -> Event:
        """Convert DB model to domain model."""
        owners = json.loads(db_item.field_owners_json or "{}")
        return Event(
            id=UUID(db_item.id),
            slug=db_item.slug,
            title=db_item.title,
            starts_at=as_utc(db_item.starts_at),
            has_time=db_item.has_time,
            venue_id=UUID(db_item.venue_id),
            region_id=UUID(db_item.region_id),
            source_id=UUID(db_item.source_id),
            source_url=db_item.source_url,
            description=db_item.description,
            cover_charge=db_item.cover_charge,
            image_url=db_item.image_url,
            doors_at=as_utc(db_item.doors_at),
            ends_at=as_utc(db_item.ends_at),
            ticket_url=db_item.ticket_url,
            age_restriction=db_item.age_restriction,
            genres=json.loads(db_item.genres_json or "[]"),
            artist_ids=[UUID(link.artist_id) for link in db_item.artists],
            field_owners={name: FieldOwner.model_validate(o) for name, o in owners.items()},
            is_cancelled=db_item.is_cancelled,
            attending_count=db_item.attending_count,
            interested_count=db_item.interested_count,
            manually_edited_at=as_utc(db_item.manually_edited_at),
            created_at=as_utc(db_item.created_at),
            updated_at=as_utc(db_item.updated_at),
        )


# ============================================================================
# Identity
# ============================================================================


_NAMESPACE_LIST_COLUMN = {
    MatchNamespace.MUSICBRAINZ: "musicbrainz_tags",
    MatchNamespace.SPOTIFY: "spotify_genres",
}


class ArtistRepository:
    """Repository for Artist operations."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, artist_id: UUID | str) -> Artist | None:
        """Get an artist by ID."""
        db_item = self.session.get(ArtistDB, str(artist_id))
        return self._to_domain(db_item) if db_item else None

    def require(self, artist_id: UUID | str) -> Artist:
        """Get an artist by ID or raise NotFoundError."""
        artist = self.get_by_id(artist_id)
        if artist is None:
            raise NotFoundError("Artist", str(artist_id))
        return artist

    def get_by_name(self, name: str) -> Artist | None:
        """Get an artist by case-insensitive name."""
        stmt = select(ArtistDB).where(ArtistDB.normalized_name == artist_key(name))
        db_item = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(db_item) if db_item else None

    def get_or_create_db(self, name: str) -> tuple[ArtistDB, bool]:
        """
        Find an artist row by name or create it PENDING in every namespace.

        Returns:
            (row, created)
        """
        key = artist_key(name)
        stmt = select(ArtistDB).where(ArtistDB.normalized_name == key)
        db_item = self.session.execute(stmt).scalar_one_or_none()
        if db_item is not None:
            return db_item, False
        db_item = ArtistDB(
            name=re.sub(r"\s+", " ", name).strip(),
            normalized_name=key,
            musicbrainz_status=MatchStatus.PENDING.value,
            spotify_status=MatchStatus.PENDING.value,
            created_at=_utc_now(),
        )
        self.session.add(db_item)
        self.session.flush()
        return db_item, True

    def list_pending(self, namespace: MatchNamespace, limit: int) -> list[Artist]:
        """PENDING artists in a namespace, oldest first with a stable tie-break."""
        status_col = getattr(ArtistDB, f"{namespace.value}_status")
        stmt = (
            select(ArtistDB)
            .where(status_col == MatchStatus.PENDING.value)
            .order_by(ArtistDB.created_at, ArtistDB.id)
            .limit(limit)
        )
        return [self._to_domain(a) for a in self.session.execute(stmt).scalars().all()]

    def list_matched(self, namespace: MatchNamespace) -> list[Artist]:
        """Artists MATCHED in a namespace."""
        status_col = getattr(ArtistDB, f"{namespace.value}_status")
        stmt = select(ArtistDB).where(status_col == MatchStatus.MATCHED.value)
        return [self._to_domain(a) for a in self.session.execute(stmt).scalars().all()]

    def list_for_event(self, event_id: UUID | str) -> list[Artist]:
        """Lineup of an event in billing order."""
        stmt = (
            select(ArtistDB)
            .join(EventArtistDB, EventArtistDB.artist_id == ArtistDB.id)
            .where(EventArtistDB.event_id == str(event_id))
            .order_by(EventArtistDB.position)
        )
        return [self._to_domain(a) for a in self.session.execute(stmt).scalars().all()]

    def save_match_state(
        self, artist: Artist, namespace: MatchNamespace, only_if_pending: bool = False
    ) -> Artist | None:
        """
        Persist one namespace's match fields of an artist.

        Args:
            artist: Artist carrying the new match fields
            namespace: Namespace whose fields are written
            only_if_pending: Write only while the stored status is still
                PENDING, so a concurrent operator action is never overwritten

        Returns:
            The stored artist, or None when only_if_pending found it no
            longer PENDING

        Raises:
            NotFoundError: Unknown artist
        """
        prefix = namespace.value
        values = {
            f"{prefix}_{suffix}": getattr(artist, f"{prefix}_{suffix}")
            for suffix in ("id", "confidence", "name", "matched_at", "error")
        }
        values[f"{prefix}_status"] = artist.status_for(namespace).value
        list_field = _NAMESPACE_LIST_COLUMN[namespace]
        values[f"{list_field}_json"] = json.dumps(getattr(artist, list_field))
        if namespace == MatchNamespace.SPOTIFY:
            values["spotify_popularity"] = artist.spotify_popularity
        values["updated_at"] = _utc_now()

        stmt = update(ArtistDB).where(ArtistDB.id == str(artist.id))
        if only_if_pending:
            status_col = getattr(ArtistDB, f"{prefix}_status")
            stmt = stmt.where(status_col == MatchStatus.PENDING.value)
        result = self.session.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            if only_if_pending and self.session.get(ArtistDB, str(artist.id)) is not None:
                return None
            raise NotFoundError("Artist", str(artist.id))

        db_item = self.session.get(ArtistDB, str(artist.id), populate_existing=True)
        return self._to_domain(db_item)

    def count_by_status(self, namespace: MatchNamespace) -> MatchingStats:
        """Exact counts per status, read straight from the table."""
        status_col = getattr(ArtistDB, f"{namespace.value}_status")
        stmt = select(status_col, func.count()).group_by(status_col)
        counts = {row[0]: row[1] for row in self.session.execute(stmt).all()}
        return MatchingStats(
            namespace=namespace,
            total=sum(counts.values()),
            pending=counts.get(MatchStatus.PENDING.value, 0),
            matched=counts.get(MatchStatus.MATCHED.value, 0),
            no_match=counts.get(MatchStatus.NO_MATCH.value, 0),
        )

    def _to_domain(self, db_item: ArtistDB) -> Artist:
        return Artist(
            id=UUID(db_item.id),
            name=db_item.name,
            musicbrainz_id=db_item.musicbrainz_id,
            musicbrainz_status=MatchStatus(db_item.musicbrainz_status),
            musicbrainz_confidence=db_item.musicbrainz_confidence,
            musicbrainz_name=db_item.musicbrainz_name,
            musicbrainz_tags=json.loads(db_item.musicbrainz_tags_json or "[]"),
            musicbrainz_matched_at=as_utc(db_item.musicbrainz_matched_at),
            musicbrainz_error=db_item.musicbrainz_error,
            spotify_id=db_item.spotify_id,
            spotify_status=MatchStatus(db_item.spotify_status),
            spotify_confidence=db_item.spotify_confidence,
            spotify_name=db_item.spotify_name,
            spotify_genres=json.loads(db_item.spotify_genres_json or "[]"),
            spotify_popularity=db_item.spotify_popularity,
            spotify_matched_at=as_utc(db_item.spotify_matched_at),
            spotify_error=db_item.spotify_error,
            created_at=as_utc(db_item.created_at),
            updated_at=as_utc(db_item.updated_at),
        )


# ============================================================================
# Playlists
# ============================================================================


class PlaylistRepository:
    """Repository for Playlist operations."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, playlist: Playlist) -> Playlist:
        """Create a new playlist."""
        db_item = PlaylistDB(
            id=str(playlist.id),
            name=playlist.name,
            spotify_playlist_id=playlist.spotify_playlist_id,
            region_id=str(playlist.region_id) if playlist.region_id else None,
            enabled=playlist.enabled,
            days_ahead=playlist.days_ahead,
            created_at=playlist.created_at,
        )
        self.session.add(db_item)
        self.session.flush()
        return self._to_domain(db_item)

    def get_by_id(self, playlist_id: UUID | str) -> Playlist | None:
        """Get a playlist by ID."""
        db_item = self.session.get(PlaylistDB, str(playlist_id))
        return self._to_domain(db_item) if db_item else None

    def require(self, playlist_id: UUID | str) -> Playlist:
        """Get a playlist by ID or raise NotFoundError."""
        playlist = self.get_by_id(playlist_id)
        if playlist is None:
            raise NotFoundError("Playlist", str(playlist_id))
        return playlist

    def list_enabled(self) -> list[Playlist]:
        """Enabled playlists ordered by name."""
        stmt = select(PlaylistDB).where(PlaylistDB.enabled.is_(True)).order_by(PlaylistDB.name)
        return [self._to_domain(p) for p in self.session.execute(stmt).scalars().all()]

    def replace_tracks(self, playlist_id: UUID | str, tracks: list[PlaylistTrack]) -> None:
        """Replace the stored track list, preserving ``added_at`` of kept tracks."""
        db_item = self.session.get(PlaylistDB, str(playlist_id))
        if db_item is None:
            raise NotFoundError("Playlist", str(playlist_id))

        added = {t.track_uri: t.added_at for t in db_item.tracks}
        db_item.tracks.clear()
        self.session.flush()
        for position, track in enumerate(tracks):
            db_item.tracks.append(
                PlaylistTrackDB(
                    id=str(track.id),
                    track_uri=track.track_uri,
                    artist_id=str(track.artist_id),
                    event_id=str(track.event_id),
                    position=position,
                    added_at=added.get(track.track_uri, track.added_at),
                )
            )
        self.session.flush()

    def record_sync(
        self,
        playlist_id: UUID | str,
        error: str | None = None,
        synced_at: datetime | None = None,
    ) -> None:
        """Stamp the outcome of a sync attempt."""
        db_item = self.session.get(PlaylistDB, str(playlist_id))
        if db_item is None:
            raise NotFoundError("Playlist", str(playlist_id))
        if error is None:
            db_item.last_synced_at = synced_at or _utc_now()
        db_item.last_sync_error = error
        self.session.flush()

    def _to_domain(self, db_item: PlaylistDB) -> Playlist:
        return Playlist(
            id=UUID(db_item.id),
            name=db_item.name,
            spotify_playlist_id=db_item.spotify_playlist_id,
            region_id=UUID(db_item.region_id) if db_item.region_id else None,
            enabled=db_item.enabled,
            days_ahead=db_item.days_ahead,
            last_synced_at=as_utc(db_item.last_synced_at),
            last_sync_error=db_item.last_sync_error,
            tracks=[
                PlaylistTrack(
                    id=UUID(t.id),
                    playlist_id=UUID(t.playlist_id),
                    track_uri=t.track_uri,
                    artist_id=UUID(t.artist_id),
                    event_id=UUID(t.event_id),
                    position=t.position,
                    added_at=as_utc(t.added_at),
                )
                for t in db_item.tracks
            ],
            created_at=as_utc(db_item.created_at),
        )


# ============================================================================
# Coordination
# ============================================================================


class LeaseRepository:
    """
    Repository for operation leases.

    Unlike the other repositories this one owns its transactions: every call
    commits on a short-lived session of ``bind`` so a lease is visible to other
    processes immediately and never rides on a caller's unit of work.
    """

    def __init__(self, bind: Engine):
        self.bind = bind

    def acquire(self, key: str, owner: str, operation: str, ttl_seconds: float) -> bool:
        """
        Take the lease on ``key`` unless a live lease exists.

        Returns:
            True if ``owner`` now holds the lease
        """
        now = _utc_now()
        expires_at = now + timedelta(seconds=ttl_seconds)
        try:
            with Session(self.bind) as session, session.begin():
                taken_over = session.execute(
                    update(LeaseDB)
                    .where(LeaseDB.key == key, LeaseDB.expires_at < now)
                    .values(owner=owner, operation=operation, acquired_at=now, expires_at=expires_at)
                )
                if taken_over.rowcount:
                    return True
                if session.get(LeaseDB, key) is not None:
                    return False
                session.add(
                    LeaseDB(
                        key=key,
                        owner=owner,
                        operation=operation,
                        acquired_at=now,
                        expires_at=expires_at,
                    )
                )
        except IntegrityError:
            # Another process inserted the same key first
            return False
        return True

    def release(self, key: str, owner: str) -> bool:
        """Drop the lease if ``owner`` still holds it."""
        with Session(self.bind) as session, session.begin():
            result = session.execute(
                delete(LeaseDB).where(LeaseDB.key == key, LeaseDB.owner == owner)
            )
            return bool(result.rowcount)

    def holder(self, key: str) -> str | None:
        """Operation holding a live lease on ``key``, if any."""
        with Session(self.bind) as session:
            db_item = session.get(LeaseDB, key)
            if db_item is None or as_utc(db_item.expires_at) <= _utc_now():
                return None
            return db_item.operation
