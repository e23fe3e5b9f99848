"""
Merge Engine Module
===================

Reconciles batches of ScrapedEvent observations with the canonical event
catalog.

For each record:
1. Drop it with a warning if it is malformed or its venue is unknown.
2. Find the canonical event it describes: a same-source key (sourceEventId,
   or a sourceUrl unique within the batch) maps directly; otherwise fuzzy
   match on venue, local calendar day and title similarity.
3. Create a new event, or merge field by field into the match.

Field conflicts are decided by the source snapshot passed in, never by a
registry lookup, so a merge is reproducible from its inputs:
- lower ``priority`` wins, higher ``trust_score`` breaks ties, and further
  ties keep the current value;
- a source may always update or clear its own values;
- clearing another source's value needs strictly higher priority;
- a human edit is protected until it is older than the staleness window;
- a date without a time never replaces a timed start.

List fields (genres, artists) are unioned, with each item attributed to the
source that first reported it. The whole batch commits or rolls back.
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, datetime, time, timedelta
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import and_, exists, select
from sqlalchemy.orm import Session

from gig_agent.core.enums import MergeAction
from gig_agent.core.errors import NotFoundError, ValidationError
from gig_agent.core.schema import Event, FieldOwner, ScrapedEvent, Source, Venue
from gig_agent.db.models import (
    EventArtistDB,
    EventDB,
    EventSourceDB,
    FieldProvenanceDB,
)
from gig_agent.db.repositories import (
    ArtistRepository,
    EventRepository,
    VenueRepository,
    artist_key,
    as_utc,
)
from gig_agent.ingestion.normalizer import make_event_slug
from gig_agent.ingestion.registry import MergeConfig
from gig_agent.ingestion.similarity import title_similarity

logger = logging.getLogger(__name__)

SCALAR_FIELDS = (
    "title",
    "starts_at",
    "source_url",
    "description",
    "cover_charge",
    "image_url",
    "doors_at",
    "ends_at",
    "ticket_url",
    "age_restriction",
)
DATETIME_FIELDS = frozenset({"starts_at", "doors_at", "ends_at"})
REQUIRED_FIELDS = frozenset({"title", "starts_at", "source_url"})


def is_empty(value: Any) -> bool:
    """None, blank strings and empty lists carry no information."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False


def outranks(incoming: FieldOwner, current: FieldOwner) -> bool:
    """
    Whether ``incoming`` wins a conflict against ``current``.

    Lower priority number wins; equal priorities fall to the higher trust
    score; full ties keep the current owner.
    """
    if incoming.priority != current.priority:
        return incoming.priority < current.priority
    return incoming.trust_score > current.trust_score


@dataclass
class RecordOutcome:
    """What happened to one record of a batch."""

    index: int
    title: str
    action: MergeAction
    event_id: UUID | None = None
    similarity: float | None = None
    reason: str | None = None


@dataclass
class MergeResult:
    """Summary of one merged batch."""

    created: int = 0
    updated: int = 0
    unchanged: int = 0
    dropped: int = 0
    ambiguous: int = 0
    cancelled: int = 0
    restored: int = 0
    event_ids: list[UUID] = field(default_factory=list)
    new_artist_ids: list[UUID] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    outcomes: list[RecordOutcome] = field(default_factory=list)

    @property
    def valid_count(self) -> int:
        """Records that reached the catalog."""
        return self.created + self.updated + self.unchanged

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "created": self.created,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "dropped": self.dropped,
            "ambiguous": self.ambiguous,
            "cancelled": self.cancelled,
            "restored": self.restored,
            "event_ids": [str(e) for e in self.event_ids],
            "new_artist_ids": [str(a) for a in self.new_artist_ids],
            "warnings": self.warnings,
        }


class MergeEngine:
    """
    Deduplicates scraped events and merges them into canonical events.

    Usage:
        engine = MergeEngine(session, registry.merge)
        result = engine.merge_batch(events, source, default_venue=venue)
    """

    def __init__(
        self,
        session: Session,
        config: MergeConfig | None = None,
        now: datetime | None = None,
    ):
        """
        Initialize the merge engine.

        Args:
            session: Database session (each batch commits or rolls back)
            config: Dedup thresholds and staleness window
            now: Reference time for cancellation and staleness (defaults to now)
        """
        self.session = session
        self.config = config or MergeConfig()
        self._now = now
        self.venues = VenueRepository(session)
        self.artists = ArtistRepository(session)
        self.events = EventRepository(session)

    @property
    def now(self) -> datetime:
        return self._now or datetime.now(UTC)

    # =========================================================================
    # Batch entry point
    # =========================================================================

    def merge_batch(
        self,
        events: list[ScrapedEvent],
        source: Source,
        default_venue: Venue | None = None,
        cancel_missing: bool = True,
    ) -> MergeResult:
        """
        Merge one source's batch into the catalog as a single transaction.

        Args:
            events: Normalized observations from one run
            source: Snapshot of the reporting source (priority, trust score)
            default_venue: Venue of venue-bound sources; records of other
                sources are placed by their ``venue_name``
            cancel_missing: Flag future events of this source that the batch
                no longer lists

        Returns:
            MergeResult with per-record outcomes

        Raises:
            Any database error, after rolling back the whole batch
        """
        result = MergeResult()
        observed_at = self.now
        incoming = FieldOwner(
            source_id=source.id,
            priority=source.priority,
            trust_score=source.trust_score,
            observed_at=observed_at,
        )
        url_counts = Counter(e.source_url for e in events if e.source_url)
        id_counts = Counter(e.source_event_id for e in events if e.source_event_id)
        seen_event_ids: set[str] = set()

        try:
            for index, scraped in enumerate(events):
                errors = scraped.validation_errors()
                venue = None
                if not errors:
                    venue = self._resolve_venue(scraped, default_venue)
                    if venue is None:
                        errors = [f"unknown venue '{scraped.venue_name or ''}'"]
                if errors:
                    self._drop(result, index, scraped, "; ".join(errors))
                    continue

                direct_url = url_counts[scraped.source_url] == 1
                direct_id = bool(scraped.source_event_id) and id_counts[scraped.source_event_id] == 1
                outcome = self._merge_record(
                    index, scraped, source, venue, incoming, result, direct_url, direct_id
                )
                result.outcomes.append(outcome)
                if outcome.event_id is not None:
                    seen_event_ids.add(str(outcome.event_id))
                    if outcome.event_id not in result.event_ids:
                        result.event_ids.append(outcome.event_id)
                self.session.flush()

            if cancel_missing and result.valid_count >= self.config.cancel_missing_min_events:
                result.cancelled = self._cancel_missing(source, seen_event_ids)

            self.session.commit()
        except Exception:
            self.session.rollback()
            logger.exception(f"Merge of {len(events)} records from {source.slug} rolled back")
            raise

        logger.info(
            f"Merged batch from {source.slug}: {result.created} created, "
            f"{result.updated} updated, {result.unchanged} unchanged, "
            f"{result.dropped} dropped, {result.ambiguous} ambiguous, "
            f"{result.cancelled} cancelled"
        )
        return result

    def _drop(self, result: MergeResult, index: int, scraped: ScrapedEvent, reason: str) -> None:
        label = scraped.title or scraped.source_url or f"record {index}"
        message = f"Dropped '{label}': {reason}"
        logger.warning(message)
        result.dropped += 1
        result.warnings.append(message)
        result.outcomes.append(
            RecordOutcome(index=index, title=scraped.title, action=MergeAction.DROPPED, reason=reason)
        )

    def _resolve_venue(self, scraped: ScrapedEvent, default_venue: Venue | None) -> Venue | None:
        if default_venue is not None:
            return default_venue
        if scraped.venue_name:
            return self.venues.find_by_name(scraped.venue_name)
        return None

    # =========================================================================
    # Matching
    # =========================================================================

    def _find_direct(
        self, scraped: ScrapedEvent, source: Source, use_url: bool, use_id: bool
    ) -> EventDB | None:
        """Event this source already reported under the same key."""
        conditions = []
        if use_id:
            conditions.append(EventSourceDB.source_event_id == scraped.source_event_id)
        if use_url:
            conditions.append(EventSourceDB.source_url == scraped.source_url)
        for condition in conditions:
            stmt = (
                select(EventDB)
                .join(EventSourceDB, EventSourceDB.event_id == EventDB.id)
                .where(EventSourceDB.source_id == str(source.id), condition)
                .order_by(EventSourceDB.first_seen_at, EventDB.id)
            )
            event = self.session.execute(stmt).scalars().first()
            if event is not None:
                return event
        return None

    def _day_window(self, starts_at: datetime, timezone: str) -> tuple[datetime, datetime]:
        """UTC bounds of the local calendar day containing ``starts_at``."""
        tz = ZoneInfo(timezone)
        local_day = starts_at.astimezone(tz).date()
        start = datetime.combine(local_day, time(), tzinfo=tz)
        end = datetime.combine(local_day + timedelta(days=1), time(), tzinfo=tz)
        return start.astimezone(UTC), end.astimezone(UTC)

    def _find_fuzzy(
        self, scraped: ScrapedEvent, venue: Venue
    ) -> tuple[EventDB | None, float | None, list[tuple[EventDB, float]]]:
        """
        Best fuzzy match at the venue.

        Returns:
            (chosen event, its similarity, every plausible candidate)
        """
        tolerance = timedelta(hours=self.config.showtime_tolerance_hours)
        if self.config.same_day_only:
            window_start, window_end = self._day_window(scraped.starts_at, venue.timezone)
        else:
            window_start = scraped.starts_at - max(tolerance, timedelta(hours=12))
            window_end = scraped.starts_at + max(tolerance, timedelta(hours=12))

        stmt = (
            select(EventDB)
            .where(
                EventDB.venue_id == str(venue.id),
                EventDB.starts_at >= window_start,
                EventDB.starts_at < window_end,
                EventDB.is_cancelled.is_(False),
            )
            .order_by(EventDB.starts_at, EventDB.id)
        )

        candidates: list[tuple[EventDB, float]] = []
        for event in self.session.execute(stmt).scalars().all():
            similarity = title_similarity(scraped.title, event.title)
            if similarity < self.config.title_similarity_threshold:
                continue
            if scraped.has_time and event.has_time:
                gap = abs(as_utc(event.starts_at) - scraped.starts_at)
                if gap > tolerance and similarity < self.config.distinct_showtime_similarity:
                    continue
            candidates.append((event, similarity))

        if not candidates:
            return None, None, []

        def rank(pair: tuple[EventDB, float]) -> tuple[float, float, str]:
            event, similarity = pair
            gap = abs((as_utc(event.starts_at) - scraped.starts_at).total_seconds())
            return (-similarity, gap, event.id)

        chosen, similarity = min(candidates, key=rank)
        return chosen, similarity, candidates

    # =========================================================================
    # Per-record merge
    # =========================================================================

    def _merge_record(
        self,
        index: int,
        scraped: ScrapedEvent,
        source: Source,
        venue: Venue,
        incoming: FieldOwner,
        result: MergeResult,
        direct_url: bool,
        direct_id: bool,
    ) -> RecordOutcome:
        similarity: float | None = None
        event = self._find_direct(scraped, source, direct_url, direct_id)
        if event is None:
            event, similarity, candidates = self._find_fuzzy(scraped, venue)
            if len(candidates) > 1:
                result.ambiguous += 1
                listing = ", ".join(
                    f"{c.id} '{c.title}' ({s:.2f})" for c, s in candidates
                )
                message = (
                    f"Ambiguous match for '{scraped.title}' at {venue.slug} on "
                    f"{scraped.starts_at.isoformat()}: candidates {listing}; chose {event.id}"
                )
                logger.warning(message)
                result.warnings.append(message)

        if event is None:
            event = self._create_event(scraped, source, venue, incoming, result)
            action = MergeAction.CREATED
            result.created += 1
        else:
            changed = self._apply_fields(event, scraped, incoming)
            changed |= self._merge_lists(event, scraped, source, result)
            if event.is_cancelled:
                event.is_cancelled = False
                result.restored += 1
                changed = True
            if changed:
                event.updated_at = self.now
                action = MergeAction.UPDATED
                result.updated += 1
            else:
                action = MergeAction.UNCHANGED
                result.unchanged += 1

        self._record_observation(event, scraped, source)
        return RecordOutcome(
            index=index,
            title=scraped.title,
            action=action,
            event_id=UUID(event.id),
            similarity=similarity,
        )

    def _create_event(
        self,
        scraped: ScrapedEvent,
        source: Source,
        venue: Venue,
        incoming: FieldOwner,
        result: MergeResult,
    ) -> EventDB:
        owners: dict[str, dict[str, Any]] = {}
        values: dict[str, Any] = {}
        for name in SCALAR_FIELDS:
            value = getattr(scraped, name)
            if is_empty(value):
                continue
            values[name] = value
            owners[name] = incoming.model_dump(mode="json")

        event = EventDB(
            slug=make_event_slug(scraped.title, scraped.starts_at, venue.timezone),
            has_time=scraped.has_time,
            venue_id=str(venue.id),
            region_id=str(venue.region_id),
            source_id=str(source.id),
            genres_json="[]",
            field_owners_json=json.dumps(owners),
            created_at=self.now,
            updated_at=self.now,
            **values,
        )
        self.session.add(event)
        self.session.flush()
        self._merge_lists(event, scraped, source, result)
        logger.debug(f"Created event {event.id} '{event.title}'")
        return event

    def _apply_fields(self, event: EventDB, scraped: ScrapedEvent, incoming: FieldOwner) -> bool:
        """Resolve each reported scalar field against its current owner."""
        owners = json.loads(event.field_owners_json or "{}")
        changed = False

        for name in SCALAR_FIELDS:
            if name not in scraped.model_fields_set and name not in REQUIRED_FIELDS:
                continue
            new_value = getattr(scraped, name)
            current = getattr(event, name)
            if name in DATETIME_FIELDS:
                current = as_utc(current)
            owner = FieldOwner.model_validate(owners[name]) if name in owners else None

            if name == "starts_at":
                decision = self._decide_start(event, scraped, owner, incoming)
            else:
                if new_value == current or (is_empty(new_value) and is_empty(current)):
                    continue
                decision = self._may_replace(current, new_value, owner, incoming)
            if not decision:
                continue

            if name == "starts_at":
                event.has_time = scraped.has_time
            setattr(event, name, None if is_empty(new_value) else new_value)
            if is_empty(new_value):
                owners.pop(name, None)
            else:
                owners[name] = incoming.model_dump(mode="json")
            if name == "title":
                event.source_id = str(incoming.source_id)
            changed = True

        if changed:
            event.field_owners_json = json.dumps(owners)
        return changed

    def _decide_start(
        self,
        event: EventDB,
        scraped: ScrapedEvent,
        owner: FieldOwner | None,
        incoming: FieldOwner,
    ) -> bool:
        current = as_utc(event.starts_at)
        if current == scraped.starts_at and event.has_time == scraped.has_time:
            return False
        if event.has_time and not scraped.has_time:
            # A bare date never replaces a known showtime
            return False
        if scraped.has_time and not event.has_time:
            return True
        return self._may_replace(current, scraped.starts_at, owner, incoming)

    def _may_replace(
        self,
        current: Any,
        new_value: Any,
        owner: FieldOwner | None,
        incoming: FieldOwner,
    ) -> bool:
        if owner is None or is_empty(current):
            return not is_empty(new_value)

        if owner.manual:
            age = self.now - owner.observed_at
            if age <= timedelta(days=self.config.manual_staleness_days):
                return False
            # Stale human edits yield to any fresh observation
            return not is_empty(new_value)

        if owner.source_id == incoming.source_id:
            return True
        if is_empty(new_value):
            return incoming.priority < owner.priority
        return outranks(incoming, owner)

    def _merge_lists(
        self, event: EventDB, scraped: ScrapedEvent, source: Source, result: MergeResult
    ) -> bool:
        """Union genres and artists into the event, attributing new items."""
        changed = False

        genres = json.loads(event.genres_json or "[]")
        for genre in scraped.genres:
            if genre in genres:
                continue
            genres.append(genre)
            self._add_provenance(event, "genres", genre, source)
            changed = True
        if changed:
            event.genres_json = json.dumps(genres)

        linked = {link.artist_id for link in event.artists}
        position = len(event.artists)
        for name in scraped.artists:
            artist, created = self.artists.get_or_create_db(name)
            if created:
                result.new_artist_ids.append(UUID(artist.id))
            if artist.id in linked:
                continue
            event.artists.append(EventArtistDB(artist_id=artist.id, position=position))
            linked.add(artist.id)
            position += 1
            self._add_provenance(event, "artists", artist_key(name), source)
            changed = True
        return changed

    def _add_provenance(self, event: EventDB, field_name: str, value: str, source: Source) -> None:
        stmt = select(FieldProvenanceDB.id).where(
            FieldProvenanceDB.event_id == event.id,
            FieldProvenanceDB.field == field_name,
            FieldProvenanceDB.value == value,
        )
        if self.session.execute(stmt).first() is not None:
            return
        self.session.add(
            FieldProvenanceDB(
                event_id=event.id,
                field=field_name,
                value=value,
                source_id=str(source.id),
                created_at=self.now,
            )
        )

    def _record_observation(self, event: EventDB, scraped: ScrapedEvent, source: Source) -> None:
        stmt = select(EventSourceDB).where(
            EventSourceDB.event_id == event.id,
            EventSourceDB.source_id == str(source.id),
        )
        observation = self.session.execute(stmt).scalar_one_or_none()
        if observation is None:
            observation = EventSourceDB(
                event_id=event.id,
                source_id=str(source.id),
                first_seen_at=self.now,
            )
            self.session.add(observation)
        observation.source_url = scraped.source_url
        observation.source_event_id = scraped.source_event_id
        observation.raw_data_json = json.dumps(scraped.raw, default=str)
        observation.last_seen_at = self.now

    # =========================================================================
    # Cancellation
    # =========================================================================

    def _cancel_missing(self, source: Source, seen_event_ids: set[str]) -> int:
        """
        Flag future events known only to this source that it no longer lists.

        Returns:
            Number of events cancelled
        """
        own = exists().where(
            EventSourceDB.event_id == EventDB.id,
            EventSourceDB.source_id == str(source.id),
        )
        other = exists().where(
            and_(
                EventSourceDB.event_id == EventDB.id,
                EventSourceDB.source_id != str(source.id),
            )
        )
        stmt = select(EventDB).where(
            EventDB.starts_at >= self.now,
            EventDB.is_cancelled.is_(False),
            own,
            ~other,
        )
        cancelled = 0
        for event in self.session.execute(stmt).scalars().all():
            if event.id in seen_event_ids:
                continue
            event.is_cancelled = True
            event.updated_at = self.now
            cancelled += 1
            logger.info(
                f"Cancelled '{event.title}' ({as_utc(event.starts_at).date()}): "
                f"no longer listed by {source.slug}"
            )
        self.session.flush()
        return cancelled

    # =========================================================================
    # Manual edits
    # =========================================================================

    def apply_manual_edit(
        self,
        event_id: UUID | str,
        changes: dict[str, Any],
        source: Source,
        edited_at: datetime | None = None,
    ) -> Event:
        """
        Apply a human correction to scalar fields of an event.

        Edited fields are owned by ``source`` and flagged manual, which
        protects them from scraped values until the staleness window passes.

        Args:
            event_id: Event to edit
            changes: Field name -> new value
            source: Manual-entry source the edit is attributed to
            edited_at: Edit time (defaults to now)

        Returns:
            The updated Event

        Raises:
            NotFoundError: Unknown event
            ValidationError: A field cannot be edited or a required field is emptied
        """
        event = self.session.get(EventDB, str(event_id))
        if event is None:
            raise NotFoundError("Event", str(event_id))
        unknown = set(changes) - set(SCALAR_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot edit fields: {', '.join(sorted(unknown))}")
        for name in REQUIRED_FIELDS & set(changes):
            if is_empty(changes[name]):
                raise ValidationError(f"Field '{name}' cannot be empty")

        edited_at = edited_at or self.now
        owner = FieldOwner(
            source_id=source.id,
            priority=source.priority,
            trust_score=source.trust_score,
            observed_at=edited_at,
            manual=True,
        ).model_dump(mode="json")
        owners = json.loads(event.field_owners_json or "{}")

        try:
            for name, value in changes.items():
                setattr(event, name, None if is_empty(value) else value)
                owners[name] = owner
                if name == "starts_at":
                    event.has_time = True
            event.field_owners_json = json.dumps(owners)
            event.manually_edited_at = edited_at
            event.updated_at = edited_at
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(f"Manual edit of event {event.id}: {', '.join(sorted(changes))}")
        return self.events.to_domain(event)
