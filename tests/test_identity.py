"""Tests for artist identity resolution."""

import tempfile
from collections.abc import Awaitable, Callable
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from gig_agent.core.enums import MatchNamespace, MatchOutcome, MatchStatus
from gig_agent.core.errors import (
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from gig_agent.core.schema import Artist
from gig_agent.db.models import Base
from gig_agent.db.repositories import ArtistRepository
from gig_agent.ingestion.locks import LockManager
from gig_agent.ingestion.registry import MatchingConfig
from gig_agent.services.identity.client import (
    CatalogArtist,
    CatalogClient,
    get_catalog_client,
    reset_shared_limiters,
)
from gig_agent.services.identity.resolver import IdentityResolver, score_candidates

MB = MatchNamespace.MUSICBRAINZ

NINA = CatalogArtist(
    id="mb-nina", name="Nina Simone", score=1.0, genres=["jazz", "soul"], url="https://mb/nina"
)
NINA_TRIBUTE = CatalogArtist(id="mb-tribute", name="Nina Simone Tribute Band", score=0.6)
SUN_RA = CatalogArtist(id="mb-sunra", name="Sun Ra Arkestra", score=1.0, genres=["free jazz"])


class FakeCatalog(CatalogClient):
    """In-memory catalog with scripted search results and failures."""

    namespace = MB

    def __init__(
        self,
        results: dict[str, list[CatalogArtist]] | None = None,
        failing: set[str] | None = None,
        on_search: Callable[[str], Awaitable[None]] | None = None,
    ):
        self.results = results or {}
        self.failing = failing or set()
        self.on_search = on_search
        self.by_id = {a.id: a for found in self.results.values() for a in found}
        self.searches: list[str] = []

    async def search_artists(self, name: str, limit: int = 5) -> list[CatalogArtist]:
        self.searches.append(name)
        if self.on_search is not None:
            await self.on_search(name)
        if name in self.failing:
            raise ExternalServiceError("musicbrainz", "HTTP 503 after 3 attempts", retryable=True)
        return self.results.get(name, [])[:limit]

    async def get_artist(self, external_id: str) -> CatalogArtist | None:
        return self.by_id.get(external_id)


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
def matching() -> MatchingConfig:
    """Matching settings without inter-request delays."""
    return MatchingConfig.from_dict(
        {"musicbrainz": {"delay_seconds": 0}, "spotify": {"delay_seconds": 0}}
    )


@pytest.fixture
def catalog() -> FakeCatalog:
    """Catalog knowing Nina Simone and Sun Ra."""
    return FakeCatalog(
        {
            "Nina Simone": [NINA_TRIBUTE, NINA],
            "Sun Ra": [SUN_RA],
            "The Nobodies": [CatalogArtist(id="mb-x", name="Completely Different", score=1.0)],
        }
    )


def add_artists(session: Session, *names: str) -> list[Artist]:
    """Create PENDING artists in order."""
    repo = ArtistRepository(session)
    created = []
    for name in names:
        db_item, _ = repo.get_or_create_db(name)
        created.append(repo.get_by_id(db_item.id))
    session.commit()
    return created


@pytest.fixture
def fresh_limiters():
    """Isolate the process-wide catalog rate limiters."""
    reset_shared_limiters()
    yield
    reset_shared_limiters()


def resolver_for(
    session: Session, matching: MatchingConfig, catalog: FakeCatalog
) -> IdentityResolver:
    return IdentityResolver(
        session, matching, clients={MB: catalog}, locks=LockManager("namespace")
    )


class TestScoreCandidates:
    """Tests for candidate ranking."""

    def test_exact_name_ranks_first(self) -> None:
        """Test that confidence beats catalog order."""
        ranked = score_candidates("Nina Simone", [NINA_TRIBUTE, NINA])
        assert ranked[0][0].id == "mb-nina"
        assert ranked[0][1] == 1.0

    def test_weak_candidates_discarded(self) -> None:
        """Test that candidates below the floor are dropped."""
        assert score_candidates("Nina Simone", [CatalogArtist(id="x", name="Zz")]) == []


class TestBatchMatching:
    """Tests for matching pending artists."""

    @pytest.mark.asyncio
    async def test_match_and_no_match(
        self, session: Session, matching: MatchingConfig, catalog: FakeCatalog
    ) -> None:
        """Test that confident candidates match and others end NO_MATCH."""
        nina, nobodies = add_artists(session, "Nina Simone", "The Nobodies")
        resolver = resolver_for(session, matching, catalog)

        result = await resolver.match_pending_artists(MB)

        assert result.processed == 2
        assert result.matched == 1
        assert result.no_match == 1

        repo = ArtistRepository(session)
        matched = repo.get_by_id(nina.id)
        assert matched.musicbrainz_status == MatchStatus.MATCHED
        assert matched.musicbrainz_id == "mb-nina"
        assert matched.musicbrainz_confidence == 1.0
        assert matched.musicbrainz_tags == ["jazz", "soul"]
        assert matched.musicbrainz_matched_at is not None
        assert matched.spotify_status == MatchStatus.PENDING

        unmatched = repo.get_by_id(nobodies.id)
        assert unmatched.musicbrainz_status == MatchStatus.NO_MATCH
        assert unmatched.musicbrainz_id is None

        assert result.stats.matched == 1
        assert result.stats.no_match == 1
        assert result.stats.pending == 0

    @pytest.mark.asyncio
    async def test_below_threshold_is_no_match(
        self, session: Session, catalog: FakeCatalog
    ) -> None:
        """Test that a confidence under the threshold is rejected."""
        matching = MatchingConfig.from_dict({"musicbrainz": {"delay_seconds": 0}})
        (artist,) = add_artists(session, "Sun Ra")
        resolver = resolver_for(session, matching, catalog)

        result = await resolver.match_pending_artists(MB)

        # "Sun Ra" is contained in "Sun Ra Arkestra": 0.8 + 0.15 * 6/15
        outcome = result.outcomes[0]
        assert outcome.outcome == MatchOutcome.NO_MATCH
        assert outcome.confidence == pytest.approx(0.86)
        assert outcome.external_id == "mb-sunra"
        stored = ArtistRepository(session).get_by_id(artist.id)
        assert stored.musicbrainz_status == MatchStatus.NO_MATCH
        assert stored.musicbrainz_confidence == pytest.approx(0.86)

    @pytest.mark.asyncio
    async def test_lower_threshold_accepts(self, session: Session, catalog: FakeCatalog) -> None:
        """Test that the threshold is configurable per namespace."""
        matching = MatchingConfig.from_dict(
            {"musicbrainz": {"delay_seconds": 0, "confidence_threshold": 0.85}}
        )
        add_artists(session, "Sun Ra")

        result = await resolver_for(session, matching, catalog).match_pending_artists(MB)

        assert result.matched == 1

    @pytest.mark.asyncio
    async def test_confidence_must_exceed_threshold(
        self, session: Session, catalog: FakeCatalog
    ) -> None:
        """Test that a confidence equal to the threshold is not enough."""
        matching = MatchingConfig.from_dict(
            {"musicbrainz": {"delay_seconds": 0, "confidence_threshold": 1.0}}
        )
        (artist,) = add_artists(session, "Nina Simone")

        result = await resolver_for(session, matching, catalog).match_pending_artists(MB)

        outcome = result.outcomes[0]
        assert outcome.outcome == MatchOutcome.NO_MATCH
        assert outcome.confidence == 1.0
        assert ArtistRepository(session).get_by_id(artist.id).musicbrainz_status == (
            MatchStatus.NO_MATCH
        )

    @pytest.mark.asyncio
    async def test_lookup_error_stays_pending(
        self, session: Session, matching: MatchingConfig
    ) -> None:
        """Test that a failed lookup is reported and retried next batch."""
        catalog = FakeCatalog({"Nina Simone": [NINA]}, failing={"Nina Simone"})
        (artist,) = add_artists(session, "Nina Simone")
        resolver = resolver_for(session, matching, catalog)

        result = await resolver.match_pending_artists(MB)

        assert result.errors == 1
        assert "HTTP 503" in result.outcomes[0].error
        stored = ArtistRepository(session).get_by_id(artist.id)
        assert stored.musicbrainz_status == MatchStatus.PENDING
        assert "HTTP 503" in stored.musicbrainz_error

        catalog.failing.clear()
        retry = await resolver.match_pending_artists(MB)
        assert retry.matched == 1
        assert ArtistRepository(session).get_by_id(artist.id).musicbrainz_error is None

    @pytest.mark.asyncio
    async def test_terminal_states_not_revisited(
        self, session: Session, matching: MatchingConfig, catalog: FakeCatalog
    ) -> None:
        """Test that matched and no-match artists are skipped by later batches."""
        add_artists(session, "Nina Simone", "The Nobodies")
        resolver = resolver_for(session, matching, catalog)
        await resolver.match_pending_artists(MB)
        catalog.searches.clear()

        result = await resolver.match_pending_artists(MB)

        assert result.processed == 0
        assert catalog.searches == []

    @pytest.mark.asyncio
    async def test_limit_takes_oldest(
        self, session: Session, matching: MatchingConfig, catalog: FakeCatalog
    ) -> None:
        """Test that the batch size caps work, oldest first."""
        add_artists(session, "Nina Simone", "Sun Ra", "The Nobodies")

        result = await resolver_for(session, matching, catalog).match_pending_artists(MB, limit=1)

        assert result.processed == 1
        assert catalog.searches == ["Nina Simone"]
        assert result.stats.pending == 2

    @pytest.mark.asyncio
    async def test_invalid_limit(
        self, session: Session, matching: MatchingConfig, catalog: FakeCatalog
    ) -> None:
        """Test that a batch size below one is rejected."""
        with pytest.raises(ValidationError):
            await resolver_for(session, matching, catalog).match_pending_artists(MB, limit=0)


class TestConcurrentChanges:
    """Tests for batches racing operators and other batches."""

    @pytest.mark.asyncio
    async def test_manual_match_during_lookup_is_kept(
        self, engine, session: Session, matching: MatchingConfig
    ) -> None:
        """Test that a batch never overwrites an operator's link made mid-lookup."""
        (artist,) = add_artists(session, "Nina Simone")

        async def operator_links(name: str) -> None:
            with sessionmaker(bind=engine)() as operator_session:
                await resolver_for(operator_session, matching, catalog).manually_match_artist(
                    MB, artist.id, "mb-nina"
                )

        # Search finds nothing for the local name, but the id is known
        catalog = FakeCatalog({"Nina": [NINA]}, on_search=operator_links)

        result = await resolver_for(session, matching, catalog).match_pending_artists(MB)

        assert [o.outcome for o in result.outcomes] == [MatchOutcome.SKIPPED]
        assert (result.skipped, result.no_match) == (1, 0)
        stored = ArtistRepository(session).get_by_id(artist.id)
        assert stored.musicbrainz_status == MatchStatus.MATCHED
        assert stored.musicbrainz_id == "mb-nina"
        assert stored.musicbrainz_confidence == 1.0
        assert result.stats.matched == 1

    @pytest.mark.asyncio
    async def test_mark_no_match_during_lookup_is_kept(
        self, engine, session: Session, matching: MatchingConfig
    ) -> None:
        """Test that an operator closing an artist mid-lookup beats a confident match."""
        (artist,) = add_artists(session, "Nina Simone")

        async def operator_closes(name: str) -> None:
            with sessionmaker(bind=engine)() as operator_session:
                resolver_for(operator_session, matching, catalog).mark_artist_no_match(
                    MB, artist.id
                )

        catalog = FakeCatalog({"Nina Simone": [NINA]}, on_search=operator_closes)

        result = await resolver_for(session, matching, catalog).match_pending_artists(MB)

        assert result.outcomes[0].outcome == MatchOutcome.SKIPPED
        assert result.to_dict()["skipped"] == 1
        stored = ArtistRepository(session).get_by_id(artist.id)
        assert stored.musicbrainz_status == MatchStatus.NO_MATCH
        assert stored.musicbrainz_id is None

    @pytest.mark.asyncio
    async def test_busy_namespace_rejected(
        self, engine, session: Session, matching: MatchingConfig, catalog: FakeCatalog
    ) -> None:
        """Test that a second batch for the same namespace is refused."""
        (artist,) = add_artists(session, "Nina Simone")

        async with LockManager("namespace").hold(MB.value, "matching", bind=engine):
            with pytest.raises(ConflictError, match="namespace 'musicbrainz' already in progress"):
                await resolver_for(session, matching, catalog).match_pending_artists(MB)

        assert catalog.searches == []
        assert ArtistRepository(session).get_by_id(artist.id).musicbrainz_status == (
            MatchStatus.PENDING
        )

    @pytest.mark.asyncio
    async def test_namespaces_run_side_by_side(
        self, engine, session: Session, matching: MatchingConfig, catalog: FakeCatalog
    ) -> None:
        """Test that a Spotify batch does not block MusicBrainz matching."""
        add_artists(session, "Nina Simone")

        async with LockManager("namespace").hold("spotify", "matching", bind=engine):
            result = await resolver_for(session, matching, catalog).match_pending_artists(MB)

        assert result.matched == 1


class TestManualActions:
    """Tests for operator overrides."""

    @pytest.mark.asyncio
    async def test_manual_match_overrides_no_match(
        self, session: Session, matching: MatchingConfig, catalog: FakeCatalog
    ) -> None:
        """Test that a manual link always ends MATCHED with full confidence."""
        (artist,) = add_artists(session, "Sun Ra")
        resolver = resolver_for(session, matching, catalog)
        await resolver.match_pending_artists(MB)

        linked = await resolver.manually_match_artist(MB, artist.id, "mb-sunra")

        assert linked.musicbrainz_status == MatchStatus.MATCHED
        assert linked.musicbrainz_id == "mb-sunra"
        assert linked.musicbrainz_confidence == 1.0
        assert linked.musicbrainz_name == "Sun Ra Arkestra"

    @pytest.mark.asyncio
    async def test_manual_match_unknown_id(
        self, session: Session, matching: MatchingConfig, catalog: FakeCatalog
    ) -> None:
        """Test that linking to a missing catalog id fails."""
        (artist,) = add_artists(session, "Sun Ra")
        resolver = resolver_for(session, matching, catalog)

        with pytest.raises(NotFoundError):
            await resolver.manually_match_artist(MB, artist.id, "mb-missing")
        with pytest.raises(ValidationError):
            await resolver.manually_match_artist(MB, artist.id, "  ")

    def test_mark_no_match_and_reset(
        self, session: Session, matching: MatchingConfig, catalog: FakeCatalog
    ) -> None:
        """Test that operators can close and reopen an artist."""
        (artist,) = add_artists(session, "Nina Simone")
        resolver = resolver_for(session, matching, catalog)

        closed = resolver.mark_artist_no_match(MB, artist.id)
        assert closed.musicbrainz_status == MatchStatus.NO_MATCH

        reopened = resolver.reset_artist_match(MB, artist.id)
        assert reopened.musicbrainz_status == MatchStatus.PENDING
        assert resolver.get_matching_stats(MB).pending == 1

    def test_unknown_artist(
        self, session: Session, matching: MatchingConfig, catalog: FakeCatalog
    ) -> None:
        """Test that actions on a missing artist raise NotFoundError."""
        with pytest.raises(NotFoundError):
            resolver_for(session, matching, catalog).reset_artist_match(MB, "missing")


class TestStats:
    """Tests for matching statistics."""

    @pytest.mark.asyncio
    async def test_counts_per_namespace(
        self, session: Session, matching: MatchingConfig, catalog: FakeCatalog
    ) -> None:
        """Test that stats are exact and namespaces are independent."""
        add_artists(session, "Nina Simone", "The Nobodies", "Sun Ra")
        resolver = resolver_for(session, matching, catalog)
        await resolver.match_pending_artists(MB, limit=2)

        stats = resolver.get_matching_stats(MB)
        assert (stats.total, stats.matched, stats.no_match, stats.pending) == (3, 1, 1, 1)

        spotify = resolver.get_matching_stats(MatchNamespace.SPOTIFY)
        assert (spotify.total, spotify.pending) == (3, 3)


class TestCatalogFactory:
    """Tests for get_catalog_client."""

    def test_unknown_namespace(self) -> None:
        """Test that unknown namespaces are rejected."""
        with pytest.raises(ValidationError):
            get_catalog_client("lastfm")

    def test_spotify_needs_credentials(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that Spotify requires client credentials."""
        monkeypatch.delenv("SPOTIFY_CLIENT_ID", raising=False)
        monkeypatch.delenv("SPOTIFY_CLIENT_SECRET", raising=False)
        with pytest.raises(ValidationError):
            get_catalog_client(MatchNamespace.SPOTIFY)

    def test_musicbrainz_needs_nothing(self) -> None:
        """Test that MusicBrainz works without credentials."""
        assert get_catalog_client("musicbrainz").namespace == MB

    def test_clients_share_namespace_limiter(self, fresh_limiters: None) -> None:
        """Test that every client of a namespace draws from one rate limiter."""
        first = get_catalog_client("musicbrainz")
        second = get_catalog_client(MB)

        assert first.limiter is second.limiter
        assert first.limiter.requests_per_second == pytest.approx(1 / 1.1)
        assert first.limiter.burst_limit == 1

    def test_resolver_applies_configured_rate(
        self, session: Session, fresh_limiters: None
    ) -> None:
        """Test that the namespace's configured ceiling builds the shared limiter."""
        matching = MatchingConfig.from_dict(
            {"musicbrainz": {"rate_limit": {"requests_per_second": 0.5, "burst_limit": 2}}}
        )

        client = IdentityResolver(session, matching, locks=LockManager("namespace")).client_for(MB)

        assert client.limiter.requests_per_second == 0.5
        assert client.limiter.burst_limit == 2
        assert get_catalog_client(MB).limiter is client.limiter
