"""Tests for artist extraction from event titles."""

from gig_agent.ingestion.lineup import clean_artist_name, extract_artist_names, is_non_artist


class TestExtractArtistNames:
    """Tests for extract_artist_names."""

    def test_support_separators(self) -> None:
        """Test splitting on w/ and &."""
        assert extract_artist_names("Alice w/ Bob & Carol") == ["Alice", "Bob", "Carol"]

    def test_presents_prefix_and_tour_suffix(self) -> None:
        """Test that promoter prefixes and tour names are removed."""
        assert extract_artist_names("Acme Presents: Dana - Fall Tour") == ["Dana"]

    def test_event_format_is_not_an_artist(self) -> None:
        """Test that open mics yield no artists."""
        assert extract_artist_names("Open Mic Night") == []

    def test_placeholders_dropped(self) -> None:
        """Test that TBA and special guests are not artists."""
        assert extract_artist_names("Alice, special guests, TBA") == ["Alice"]

    def test_duplicates_dropped_case_insensitively(self) -> None:
        """Test that repeated names appear once."""
        assert extract_artist_names("Alice + alice") == ["Alice"]

    def test_caps_at_five(self) -> None:
        """Test that at most five names are returned."""
        names = extract_artist_names("A1a, B2b, C3c, D4d, E5e, F6f")
        assert len(names) == 5

    def test_empty_title(self) -> None:
        """Test that a blank title yields nothing."""
        assert extract_artist_names("   ") == []


class TestCleanArtistName:
    """Tests for clean_artist_name."""

    def test_strips_time_suffix(self) -> None:
        """Test that a trailing show time is removed."""
        assert clean_artist_name("Alice 8pm") == "Alice"

    def test_strips_parenthetical_and_live(self) -> None:
        """Test that trailing notes are removed."""
        assert clean_artist_name("Alice (Solo) ") == "Alice"
        assert clean_artist_name("Alice LIVE") == "Alice"

    def test_rejects_too_short(self) -> None:
        """Test that single characters are rejected."""
        assert clean_artist_name("A") is None

    def test_rejects_sentences(self) -> None:
        """Test that long sentences are rejected."""
        assert clean_artist_name("one two three four five six seven eight nine ten eleven") is None

    def test_is_non_artist(self) -> None:
        """Test format detection."""
        assert is_non_artist("Karaoke with Sam")
        assert not is_non_artist("Sam Cooke")
