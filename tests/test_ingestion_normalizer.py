"""Tests for the ingestion normalizer module."""

from datetime import UTC, datetime

import pytest

from gig_agent.core.schema import ScrapedEvent
from gig_agent.ingestion.normalizer import Normalizer, make_event_slug

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


@pytest.fixture
def normalizer() -> Normalizer:
    """Normalizer in New York time with a pinned clock."""
    return Normalizer(
        timezone="America/New_York", now=NOW, base_url="https://venue.example/calendar"
    )


class TestParseDatetime:
    """Tests for datetime parsing."""

    def test_naive_is_venue_local(self, normalizer: Normalizer) -> None:
        """Test that naive times are read in the venue timezone."""
        parsed, has_time = normalizer.parse_datetime("2026-11-01T20:00")
        assert parsed == datetime(2026, 11, 2, 1, 0, tzinfo=UTC)
        assert has_time is True

    def test_aware_is_converted_to_utc(self, normalizer: Normalizer) -> None:
        """Test that offsets are honored."""
        parsed, _ = normalizer.parse_datetime("2026-11-01T20:00:00Z")
        assert parsed == datetime(2026, 11, 1, 20, 0, tzinfo=UTC)

    def test_bare_date_has_no_time(self, normalizer: Normalizer) -> None:
        """Test that a date without time is flagged."""
        parsed, has_time = normalizer.parse_datetime("2026-11-01")
        assert parsed is not None
        assert has_time is False

    def test_local_midnight_has_no_time(self, normalizer: Normalizer) -> None:
        """Test that 00:00 local means no time was specified."""
        _, has_time = normalizer.parse_datetime("2026-11-01T00:00:00")
        assert has_time is False

    def test_unparseable(self, normalizer: Normalizer) -> None:
        """Test that garbage yields None."""
        assert normalizer.parse_datetime("next friday") == (None, False)
        assert normalizer.parse_datetime(None) == (None, False)


class TestCorrectYear:
    """Tests for year correction."""

    def test_far_future_moves_back(self, normalizer: Normalizer) -> None:
        """Test that a date almost a year ahead becomes this year's recent date."""
        parsed, _ = normalizer.parse_datetime("2027-10-10T20:00")
        corrected = normalizer.correct_year(parsed)
        assert corrected.astimezone(normalizer.tz).date().isoformat() == "2026-10-10"

    def test_past_date_with_upcoming_month_moves_forward(self, normalizer: Normalizer) -> None:
        """Test that January listed in October means next January."""
        parsed, _ = normalizer.parse_datetime("2026-01-05T20:00")
        corrected = normalizer.correct_year(parsed)
        assert corrected.astimezone(normalizer.tz).year == 2027

    def test_ordinary_past_date_unchanged(self, normalizer: Normalizer) -> None:
        """Test that a past date in an unrelated month is kept."""
        parsed, _ = normalizer.parse_datetime("2026-05-01T20:00")
        assert normalizer.correct_year(parsed) == parsed

    def test_near_future_unchanged(self, normalizer: Normalizer) -> None:
        """Test that normal upcoming dates are kept."""
        parsed, _ = normalizer.parse_datetime("2026-11-20T20:00")
        assert normalizer.correct_year(parsed) == parsed


class TestCleaning:
    """Tests for titles, descriptions, genres and artists."""

    def test_clean_title_prefix_and_time(self, normalizer: Normalizer) -> None:
        """Test that category prefixes and times are removed."""
        assert normalizer.clean_title("Live Music: Alice - 8pm") == "Alice"

    def test_clean_title_leading_date(self, normalizer: Normalizer) -> None:
        """Test that leading dates are removed."""
        assert normalizer.clean_title("Friday, Nov 7 - Jazz Night") == "Jazz Night"

    def test_clean_description_strips_html(self, normalizer: Normalizer) -> None:
        """Test that tags are removed and blocks become spaces."""
        text = "<p>Great <b>show</b></p><p>Doors &amp; bar at 7</p>"
        assert normalizer.clean_description(text) == "Great show Doors & bar at 7"

    def test_normalize_genres(self, normalizer: Normalizer) -> None:
        """Test slugging, aliasing and de-duplication."""
        assert normalizer.normalize_genres("Hip Hop, Jazz; jazz") == ["hip-hop", "jazz"]
        assert normalizer.normalize_genres(["R&B", "EDM"]) == ["rnb", "electronic"]
        assert normalizer.normalize_genres(None) == []

    def test_normalize_artists(self, normalizer: Normalizer) -> None:
        """Test trimming and case-insensitive de-duplication."""
        assert normalizer.normalize_artists([" Alice ", "alice", "Bob"]) == ["Alice", "Bob"]


class TestNormalizeEvent:
    """Tests for whole-record normalization."""

    def test_camel_case_record(self, normalizer: Normalizer) -> None:
        """Test a typical scraper record."""
        event = normalizer.normalize_event(
            {
                "title": "Jazz Night",
                "startsAt": "2026-11-01T20:00",
                "sourceUrl": "/events/1",
                "genres": ["Jazz"],
            }
        )
        assert event.title == "Jazz Night"
        assert event.source_url == "https://venue.example/events/1"
        assert event.genres == ["jazz"]
        assert event.has_time is True
        assert event.validation_errors() == []

    def test_absent_fields_not_set(self, normalizer: Normalizer) -> None:
        """Test that absent keys stay out of model_fields_set."""
        event = normalizer.normalize_event(
            {"title": "Alice", "startsAt": "2026-11-01T20:00", "sourceUrl": "x", "description": None}
        )
        assert "description" in event.model_fields_set
        assert event.description is None
        assert "cover_charge" not in event.model_fields_set

    def test_artists_extracted_from_title(self, normalizer: Normalizer) -> None:
        """Test that a record without artists gets names from its title."""
        event = normalizer.normalize_event(
            {"title": "Alice w/ Bob", "startsAt": "2026-11-01T20:00", "sourceUrl": "x"}
        )
        assert event.artists == ["Alice", "Bob"]

    def test_missing_required_fields(self, normalizer: Normalizer) -> None:
        """Test that incomplete records report their problems."""
        event = normalizer.normalize_event({"title": "Alice"})
        assert "missing sourceUrl" in event.validation_errors()
        assert "missing startsAt" in event.validation_errors()

    def test_non_mapping_records(self, normalizer: Normalizer) -> None:
        """Test that non-object records become empty events."""
        events = normalizer.normalize_events(["oops", {"title": "Alice"}])
        assert len(events) == 2
        assert isinstance(events[0], ScrapedEvent)
        assert events[0].title == ""


class TestEventSlug:
    """Tests for make_event_slug."""

    def test_uses_local_date(self) -> None:
        """Test that the slug date is the venue-local calendar date."""
        starts_at = datetime(2025, 11, 2, 1, 0, tzinfo=UTC)
        assert make_event_slug("Jazz Night", starts_at, "America/New_York") == (
            "jazz-night-2025-11-01"
        )

    def test_truncates_long_titles(self) -> None:
        """Test that the title part is cut to 80 characters."""
        slug = make_event_slug("x" * 200, datetime(2025, 11, 1, 20, 0, tzinfo=UTC))
        assert slug == "x" * 80 + "-2025-11-01"
