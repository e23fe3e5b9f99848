"""Tests for the merge engine."""

import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from gig_agent.core.enums import MergeAction, SourceType
from gig_agent.core.errors import NotFoundError, ValidationError
from gig_agent.core.schema import FieldOwner, Region, ScrapedEvent, Source, Venue
from gig_agent.db.models import Base
from gig_agent.db.repositories import (
    EventRepository,
    RegionRepository,
    SourceRepository,
    VenueRepository,
)
from gig_agent.ingestion.merge import MergeEngine, MergeResult, is_empty, outranks
from gig_agent.ingestion.registry import MergeConfig

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)
# Saturday 2026-10-24 20:00 in New York
SHOW = datetime(2026, 10, 25, 0, 0, tzinfo=UTC)
JAZZ_URL = "https://venue.example/events/jazz-night"


@pytest.fixture
def temp_db_path():
    """Create a temporary database file."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "test.db"


@pytest.fixture
def engine(temp_db_path):
    """Create a test database engine."""
    url = f"sqlite:///{temp_db_path}"
    engine = create_engine(url, echo=False)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    """Create a database session for testing."""
    SessionLocal = sessionmaker(bind=engine)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def venue(session: Session) -> Venue:
    """A New York venue."""
    region = RegionRepository(session).create(Region(name="New York City", slug="nyc"))
    venue = VenueRepository(session).create(
        Venue(name="Village Vanguard", slug="village-vanguard", region_id=region.id)
    )
    session.commit()
    return venue


def _create_source(
    session: Session,
    slug: str,
    priority: int,
    source_type: SourceType = SourceType.SCRAPER,
    trust_score: float = 0.8,
) -> Source:
    source = SourceRepository(session).create(
        Source(slug=slug, name=slug, type=source_type, priority=priority, trust_score=trust_score)
    )
    session.commit()
    return source


@pytest.fixture
def scraper_source(session: Session, venue: Venue) -> Source:
    """The venue's own scraper, highest precedence."""
    return _create_source(session, "village-vanguard", 10)


@pytest.fixture
def feed_source(session: Session, venue: Venue) -> Source:
    """A ticketing feed."""
    return _create_source(session, "ticket-feed", 20, SourceType.API)


@pytest.fixture
def manual_source(session: Session, venue: Venue) -> Source:
    """Manually entered events, lowest precedence."""
    return _create_source(session, "manual-entries", 40, SourceType.MANUAL)


def scraped(
    title: str = "Jazz Night",
    starts_at: datetime = SHOW,
    url: str = JAZZ_URL,
    **kwargs,
) -> ScrapedEvent:
    """Build a scraped record with the required fields filled in."""
    return ScrapedEvent(title=title, starts_at=starts_at, source_url=url, **kwargs)


def merge(
    session: Session,
    events: list[ScrapedEvent],
    source: Source,
    venue: Venue | None,
    now: datetime = NOW,
    **kwargs,
) -> MergeResult:
    """Merge one batch with default tunables."""
    return MergeEngine(session, MergeConfig(), now=now).merge_batch(
        events, source, default_venue=venue, **kwargs
    )


class TestHelpers:
    """Tests for conflict helpers."""

    def _owner(self, priority: int, trust_score: float) -> FieldOwner:
        return FieldOwner(
            source_id=uuid4(), priority=priority, trust_score=trust_score, observed_at=NOW
        )

    def test_lower_priority_wins(self) -> None:
        """Test that a lower priority number outranks."""
        assert outranks(self._owner(10, 0.1), self._owner(20, 1.0))
        assert not outranks(self._owner(20, 1.0), self._owner(10, 0.1))

    def test_trust_breaks_ties(self) -> None:
        """Test that equal priorities fall to trust score."""
        assert outranks(self._owner(20, 0.9), self._owner(20, 0.5))
        assert not outranks(self._owner(20, 0.5), self._owner(20, 0.9))

    def test_full_tie_keeps_current(self) -> None:
        """Test that an exact tie does not replace."""
        assert not outranks(self._owner(20, 0.8), self._owner(20, 0.8))

    @pytest.mark.parametrize("value", [None, "", "   ", []])
    def test_is_empty(self, value) -> None:
        """Test that blank values carry no information."""
        assert is_empty(value)

    def test_is_not_empty(self) -> None:
        """Test that zero and text are values."""
        assert not is_empty(0)
        assert not is_empty("$20")


class TestCreate:
    """Tests for creating canonical events."""

    def test_manual_source_creates_event(
        self, session: Session, venue: Venue, manual_source: Source
    ) -> None:
        """Test that a manual entry becomes a canonical event."""
        result = merge(
            session, [scraped(genres=["jazz"], artists=["Nina Simone"])], manual_source, venue
        )

        assert result.created == 1
        assert result.outcomes[0].action == MergeAction.CREATED
        assert len(result.new_artist_ids) == 1

        event = EventRepository(session).get_by_id(result.event_ids[0])
        assert event.title == "Jazz Night"
        assert event.starts_at == SHOW
        assert event.genres == ["jazz"]
        assert event.source_id == manual_source.id
        assert event.venue_id == venue.id
        assert event.region_id == venue.region_id
        assert event.field_owners["title"].source_id == manual_source.id
        assert len(event.artist_ids) == 1

    def test_observation_and_provenance_recorded(
        self, session: Session, venue: Venue, manual_source: Source
    ) -> None:
        """Test that the source observation and list attribution are stored."""
        result = merge(
            session,
            [scraped(source_event_id="evt-1", genres=["jazz"], raw={"id": "evt-1"})],
            manual_source,
            venue,
        )
        repo = EventRepository(session)
        event_id = result.event_ids[0]

        sources = repo.get_sources(event_id)
        assert len(sources) == 1
        assert sources[0].source_id == manual_source.id
        assert sources[0].source_event_id == "evt-1"
        assert sources[0].raw_data == {"id": "evt-1"}

        provenance = repo.get_field_provenance(event_id, "genres")
        assert [(p.value, p.source_id) for p in provenance] == [("jazz", manual_source.id)]

    def test_remerge_is_unchanged(
        self, session: Session, venue: Venue, manual_source: Source
    ) -> None:
        """Test that merging the same batch twice changes nothing."""
        batch = [scraped(genres=["jazz"], artists=["Nina Simone"])]
        first = merge(session, batch, manual_source, venue)
        second = merge(session, batch, manual_source, venue)

        assert second.created == 0
        assert second.unchanged == 1
        assert second.new_artist_ids == []
        assert second.event_ids == first.event_ids
        assert EventRepository(session).count() == 1


class TestBatchAtomicity:
    """Tests for all-or-nothing batches."""

    def test_failure_midway_rolls_back_whole_batch(
        self,
        session: Session,
        venue: Venue,
        manual_source: Source,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Test that an error on the second record undoes the first record's changes."""
        first = merge(session, [scraped(genres=["jazz"])], manual_source, venue)
        record_observation = MergeEngine._record_observation
        calls: list[str] = []

        def fail_on_second(self, event, record, source):
            calls.append(record.title)
            if len(calls) == 2:
                raise RuntimeError("disk I/O error")
            record_observation(self, event, record, source)

        monkeypatch.setattr(MergeEngine, "_record_observation", fail_on_second)
        batch = [
            scraped(genres=["jazz", "bebop"], artists=["Nina Simone"]),
            scraped(
                title="Late Set",
                starts_at=SHOW + timedelta(hours=3),
                url="https://venue.example/events/late-set",
            ),
        ]

        with pytest.raises(RuntimeError, match="disk I/O error"):
            merge(session, batch, manual_source, venue)

        assert calls == ["Jazz Night", "Late Set"]
        repo = EventRepository(session)
        assert repo.count() == 1
        event = repo.get_by_id(first.event_ids[0])
        assert event.genres == ["jazz"]
        assert event.artist_ids == []
        assert len(repo.get_sources(event.id)) == 1


class TestDropped:
    """Tests for records that never reach the catalog."""

    def test_malformed_record_dropped(
        self, session: Session, venue: Venue, scraper_source: Source
    ) -> None:
        """Test that a record without a title is dropped with a warning."""
        result = merge(session, [scraped(title=""), scraped()], scraper_source, venue)

        assert result.dropped == 1
        assert result.created == 1
        assert result.outcomes[0].action == MergeAction.DROPPED
        assert "missing title" in result.outcomes[0].reason
        assert any("missing title" in w for w in result.warnings)

    def test_unknown_venue_dropped(
        self, session: Session, venue: Venue, feed_source: Source
    ) -> None:
        """Test that venue-less sources need a known venue name."""
        result = merge(
            session,
            [
                scraped(venue_name="Nowhere Hall"),
                scraped(title="Late Set", url="https://feed.example/2", venue_name="village vanguard"),
            ],
            feed_source,
            None,
        )

        assert result.dropped == 1
        assert "unknown venue" in result.outcomes[0].reason
        assert result.created == 1
        event = EventRepository(session).get_by_id(result.event_ids[0])
        assert event.venue_id == venue.id


class TestDeduplication:
    """Tests for matching observations to existing events."""

    def test_supporting_acts_title_matches(
        self, session: Session, venue: Venue, manual_source: Source, feed_source: Source
    ) -> None:
        """Test that a title with support acts matches the headliner's event."""
        merge(session, [scraped()], manual_source, venue)
        result = merge(
            session,
            [scraped(title="Jazz Night w/ Special Guests", url="https://feed.example/1")],
            feed_source,
            venue,
        )

        assert result.created == 0
        assert result.updated == 1
        assert result.outcomes[0].similarity == pytest.approx(0.85)
        assert EventRepository(session).count() == 1

    def test_different_titles_stay_apart(
        self, session: Session, venue: Venue, manual_source: Source, feed_source: Source
    ) -> None:
        """Test that unrelated shows on the same night are distinct."""
        merge(session, [scraped()], manual_source, venue)
        result = merge(
            session,
            [scraped(title="Comedy Hour", url="https://feed.example/2")],
            feed_source,
            venue,
        )

        assert result.created == 1
        assert EventRepository(session).count() == 2

    def test_different_days_stay_apart(
        self, session: Session, venue: Venue, manual_source: Source, feed_source: Source
    ) -> None:
        """Test that the same title a day later is another event."""
        merge(session, [scraped()], manual_source, venue)
        result = merge(
            session,
            [scraped(starts_at=SHOW + timedelta(days=1), url="https://feed.example/3")],
            feed_source,
            venue,
        )

        assert result.created == 1

    def test_distinct_sets_same_night(
        self, session: Session, venue: Venue, scraper_source: Source
    ) -> None:
        """Test that similar titles far apart in time are separate sets."""
        result = merge(
            session,
            [
                scraped(
                    title="Jazz Night - Early Set",
                    starts_at=SHOW - timedelta(hours=1),
                    url="https://venue.example/early",
                ),
                scraped(
                    title="Jazz Night - Late Set",
                    starts_at=SHOW + timedelta(hours=2),
                    url="https://venue.example/late",
                ),
            ],
            scraper_source,
            venue,
        )

        assert result.created == 2

    def test_ambiguous_match_warns_and_picks_closest(
        self, session: Session, venue: Venue, scraper_source: Source, feed_source: Source
    ) -> None:
        """Test that several plausible candidates are reported and the closest wins."""
        sets = merge(
            session,
            [
                scraped(
                    title="Jazz Night - Early Set",
                    starts_at=SHOW - timedelta(hours=1),
                    url="https://venue.example/early",
                ),
                scraped(
                    title="Jazz Night - Late Set",
                    starts_at=SHOW + timedelta(hours=2),
                    url="https://venue.example/late",
                ),
            ],
            scraper_source,
            venue,
        )
        early_id = sets.event_ids[0]

        result = merge(session, [scraped(url="https://feed.example/4")], feed_source, venue)

        assert result.ambiguous == 1
        assert result.created == 0
        assert result.outcomes[0].event_id == early_id
        assert any("Ambiguous match" in w for w in result.warnings)

    def test_direct_match_by_source_event_id(
        self, session: Session, venue: Venue, scraper_source: Source
    ) -> None:
        """Test that a renamed event is found by its source id."""
        first = merge(session, [scraped(source_event_id="vv-1")], scraper_source, venue)
        result = merge(
            session,
            [scraped(title="Completely Renamed Evening", source_event_id="vv-1")],
            scraper_source,
            venue,
        )

        assert result.updated == 1
        assert result.event_ids == first.event_ids
        event = EventRepository(session).get_by_id(first.event_ids[0])
        assert event.title == "Completely Renamed Evening"


class TestFieldConflicts:
    """Tests for field-level conflict resolution."""

    def test_priority_decides(
        self,
        session: Session,
        venue: Venue,
        scraper_source: Source,
        feed_source: Source,
        manual_source: Source,
    ) -> None:
        """Test that lower priority numbers win and higher ones cannot overwrite."""
        created = merge(session, [scraped(description="Piano trio")], manual_source, venue)
        event_id = created.event_ids[0]

        merge(
            session,
            [scraped(url="https://vanguard.example/jazz", description="Bill Charlap Trio")],
            scraper_source,
            venue,
        )
        result = merge(
            session,
            [scraped(url="https://feed.example/jazz", description="Some jazz")],
            feed_source,
            venue,
        )

        assert result.unchanged == 1
        event = EventRepository(session).get_by_id(event_id)
        assert event.description == "Bill Charlap Trio"
        assert event.source_url == "https://vanguard.example/jazz"
        assert event.field_owners["description"].source_id == scraper_source.id

    def test_source_may_clear_own_value(
        self, session: Session, venue: Venue, scraper_source: Source
    ) -> None:
        """Test that an explicit empty value from the owner clears the field."""
        created = merge(session, [scraped(cover_charge="$35")], scraper_source, venue)
        merge(session, [scraped(cover_charge=None)], scraper_source, venue)

        event = EventRepository(session).get_by_id(created.event_ids[0])
        assert event.cover_charge is None
        assert "cover_charge" not in event.field_owners

    def test_weaker_source_cannot_clear(
        self, session: Session, venue: Venue, scraper_source: Source, feed_source: Source
    ) -> None:
        """Test that a lower-precedence source cannot blank another's value."""
        created = merge(session, [scraped(cover_charge="$35")], scraper_source, venue)
        merge(
            session,
            [scraped(url="https://feed.example/jazz", cover_charge=None)],
            feed_source,
            venue,
        )

        event = EventRepository(session).get_by_id(created.event_ids[0])
        assert event.cover_charge == "$35"

    def test_absent_field_leaves_value(
        self, session: Session, venue: Venue, scraper_source: Source
    ) -> None:
        """Test that omitting a field is not the same as clearing it."""
        created = merge(session, [scraped(cover_charge="$35")], scraper_source, venue)
        merge(session, [scraped()], scraper_source, venue)

        event = EventRepository(session).get_by_id(created.event_ids[0])
        assert event.cover_charge == "$35"

    def test_bare_date_never_replaces_showtime(
        self, session: Session, venue: Venue, manual_source: Source, scraper_source: Source
    ) -> None:
        """Test that a date without a time keeps the known showtime."""
        created = merge(session, [scraped()], manual_source, venue)
        local_midnight = datetime(2026, 10, 24, 4, 0, tzinfo=UTC)
        merge(
            session,
            [scraped(starts_at=local_midnight, has_time=False, url="https://vanguard.example/j")],
            scraper_source,
            venue,
        )

        event = EventRepository(session).get_by_id(created.event_ids[0])
        assert event.starts_at == SHOW
        assert event.has_time is True

    def test_showtime_fills_bare_date(
        self, session: Session, venue: Venue, scraper_source: Source, manual_source: Source
    ) -> None:
        """Test that any source may add a time to a date-only event."""
        local_midnight = datetime(2026, 10, 24, 4, 0, tzinfo=UTC)
        created = merge(
            session, [scraped(starts_at=local_midnight, has_time=False)], scraper_source, venue
        )
        merge(session, [scraped(url="https://manual.example/j")], manual_source, venue)

        event = EventRepository(session).get_by_id(created.event_ids[0])
        assert event.starts_at == SHOW
        assert event.has_time is True

    def test_lists_are_unioned(
        self, session: Session, venue: Venue, manual_source: Source, feed_source: Source
    ) -> None:
        """Test that genres and artists from every source accumulate."""
        created = merge(
            session, [scraped(genres=["jazz"], artists=["Bill Charlap"])], manual_source, venue
        )
        merge(
            session,
            [
                scraped(
                    url="https://feed.example/j",
                    genres=["jazz", "bebop"],
                    artists=["Bill Charlap", "Peter Washington"],
                )
            ],
            feed_source,
            venue,
        )

        repo = EventRepository(session)
        event = repo.get_by_id(created.event_ids[0])
        assert event.genres == ["jazz", "bebop"]
        assert len(event.artist_ids) == 2
        provenance = repo.get_field_provenance(event.id, "genres")
        assert {p.value: p.source_id for p in provenance} == {
            "jazz": manual_source.id,
            "bebop": feed_source.id,
        }


class TestManualEdits:
    """Tests for human corrections."""

    def test_manual_edit_protected_until_stale(
        self, session: Session, venue: Venue, scraper_source: Source, manual_source: Source
    ) -> None:
        """Test that scraped values yield to a fresh edit but win over a stale one."""
        created = merge(session, [scraped(description="Scraped text")], scraper_source, venue)
        event_id = created.event_ids[0]

        engine = MergeEngine(session, MergeConfig(), now=NOW)
        edited = engine.apply_manual_edit(
            event_id, {"description": "Edited by staff"}, manual_source, edited_at=NOW
        )
        assert edited.description == "Edited by staff"
        assert edited.manually_edited_at == NOW
        assert edited.field_owners["description"].manual is True

        merge(
            session,
            [scraped(description="Scraped again")],
            scraper_source,
            venue,
            now=NOW + timedelta(days=1),
        )
        assert EventRepository(session).get_by_id(event_id).description == "Edited by staff"

        merge(
            session,
            [scraped(description="Scraped again")],
            scraper_source,
            venue,
            now=NOW + timedelta(days=31),
        )
        assert EventRepository(session).get_by_id(event_id).description == "Scraped again"

    def test_unknown_event(self, session: Session, manual_source: Source) -> None:
        """Test that editing a missing event raises NotFoundError."""
        engine = MergeEngine(session, MergeConfig(), now=NOW)
        with pytest.raises(NotFoundError):
            engine.apply_manual_edit(uuid4(), {"description": "x"}, manual_source)

    def test_invalid_fields(
        self, session: Session, venue: Venue, manual_source: Source
    ) -> None:
        """Test that unknown fields and emptied required fields are rejected."""
        created = merge(session, [scraped()], manual_source, venue)
        engine = MergeEngine(session, MergeConfig(), now=NOW)

        with pytest.raises(ValidationError):
            engine.apply_manual_edit(created.event_ids[0], {"venue_id": "x"}, manual_source)
        with pytest.raises(ValidationError):
            engine.apply_manual_edit(created.event_ids[0], {"title": "  "}, manual_source)


class TestCancellation:
    """Tests for flagging events a source stopped listing."""

    def _batch(self, count: int) -> list[ScrapedEvent]:
        return [
            scraped(
                title=f"Show {i}",
                starts_at=SHOW + timedelta(days=i),
                url=f"https://venue.example/show-{i}",
            )
            for i in range(count)
        ]

    def test_missing_event_cancelled_and_restored(
        self, session: Session, venue: Venue, scraper_source: Source
    ) -> None:
        """Test that a dropped listing is cancelled and comes back when relisted."""
        first = merge(session, self._batch(4), scraper_source, venue)
        missing_id = first.event_ids[3]

        second = merge(session, self._batch(3), scraper_source, venue)
        assert second.cancelled == 1
        assert EventRepository(session).get_by_id(missing_id).is_cancelled is True

        third = merge(session, self._batch(4), scraper_source, venue)
        assert third.restored == 1
        assert third.cancelled == 0
        assert EventRepository(session).get_by_id(missing_id).is_cancelled is False

    def test_corroborated_event_not_cancelled(
        self, session: Session, venue: Venue, scraper_source: Source, manual_source: Source
    ) -> None:
        """Test that events another source still reports stay listed."""
        first = merge(session, self._batch(4), scraper_source, venue)
        relisted = self._batch(4)[3].model_copy(update={"source_url": "https://m.example/3"})
        merge(session, [relisted], manual_source, venue)

        second = merge(session, self._batch(3), scraper_source, venue)

        assert second.cancelled == 0
        assert EventRepository(session).get_by_id(first.event_ids[3]).is_cancelled is False

    def test_small_batches_never_cancel(
        self, session: Session, venue: Venue, scraper_source: Source
    ) -> None:
        """Test that a nearly empty batch is not taken as a full listing."""
        merge(session, self._batch(4), scraper_source, venue)
        result = merge(session, self._batch(1), scraper_source, venue)
        assert result.cancelled == 0

    def test_cancel_missing_disabled(
        self, session: Session, venue: Venue, scraper_source: Source
    ) -> None:
        """Test that cancellation can be turned off per batch."""
        merge(session, self._batch(4), scraper_source, venue)
        result = merge(session, self._batch(3), scraper_source, venue, cancel_missing=False)
        assert result.cancelled == 0
