"""Identity resolver: matches local artists to external catalog ids.

Each (artist, namespace) pair moves PENDING -> MATCHED or NO_MATCH through
batch matching. Both outcomes are terminal for automation and change only
through the manual actions (manual match, mark no-match, reset).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from gig_agent.core.enums import MatchNamespace, MatchOutcome, MatchStatus
from gig_agent.core.errors import NotFoundError, ValidationError
from gig_agent.core.schema import Artist, MatchingStats
from gig_agent.db.repositories import ArtistRepository
from gig_agent.ingestion.locks import LockManager, get_matching_locks
from gig_agent.ingestion.registry import MatchingConfig
from gig_agent.ingestion.similarity import name_confidence
from gig_agent.services.identity.client import (
    CatalogArtist,
    CatalogClient,
    get_catalog_client,
    shared_limiter,
)

logger = logging.getLogger(__name__)

# Artist fields holding each namespace's list metadata
_LIST_FIELD = {
    MatchNamespace.MUSICBRAINZ: "musicbrainz_tags",
    MatchNamespace.SPOTIFY: "spotify_genres",
}


@dataclass
class ArtistMatchOutcome:
    """Result of one artist's matching attempt."""

    artist_id: UUID
    name: str
    outcome: MatchOutcome
    confidence: float | None = None
    external_id: str | None = None
    external_name: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "artist_id": str(self.artist_id),
            "name": self.name,
            "outcome": self.outcome.value,
            "confidence": self.confidence,
            "external_id": self.external_id,
            "external_name": self.external_name,
            "error": self.error,
        }


@dataclass
class MatchBatchResult:
    """Summary of one batch matching run."""

    namespace: MatchNamespace
    outcomes: list[ArtistMatchOutcome] = field(default_factory=list)
    stats: MatchingStats | None = None

    def _count(self, outcome: MatchOutcome) -> int:
        return sum(1 for o in self.outcomes if o.outcome == outcome)

    @property
    def processed(self) -> int:
        return len(self.outcomes)

    @property
    def matched(self) -> int:
        return self._count(MatchOutcome.MATCHED)

    @property
    def no_match(self) -> int:
        return self._count(MatchOutcome.NO_MATCH)

    @property
    def errors(self) -> int:
        return self._count(MatchOutcome.ERROR)

    @property
    def skipped(self) -> int:
        return self._count(MatchOutcome.SKIPPED)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "namespace": self.namespace.value,
            "processed": self.processed,
            "matched": self.matched,
            "no_match": self.no_match,
            "errors": self.errors,
            "skipped": self.skipped,
            "outcomes": [o.to_dict() for o in self.outcomes],
            "stats": self.stats.model_dump(mode="json") if self.stats else None,
        }


def score_candidates(
    name: str, candidates: list[CatalogArtist], min_score: float = 0.3
) -> list[tuple[CatalogArtist, float]]:
    """
    Confidence-rank catalog candidates for a local artist name.

    Candidates under ``min_score`` are discarded; ties fall back to the
    catalog's own relevance score.
    """
    scored = [(c, name_confidence(name, c.name)) for c in candidates]
    scored = [(c, s) for c, s in scored if s >= min_score]
    scored.sort(key=lambda pair: (-pair[1], -pair[0].score))
    return scored


class IdentityResolver:
    """Service for matching artists against external catalogs."""

    def __init__(
        self,
        session: Session,
        matching: MatchingConfig | None = None,
        clients: dict[MatchNamespace, CatalogClient] | None = None,
        locks: LockManager | None = None,
    ):
        """
        Initialize the resolver.

        Args:
            session: Database session (operations commit on it)
            matching: Thresholds, batch sizes and per-namespace delays
            clients: Catalog clients by namespace (created from the environment
                when missing)
            locks: Per-namespace batch lock manager (defaults to the
                process-wide one)
        """
        self.session = session
        self.matching = matching or MatchingConfig()
        self.clients = dict(clients or {})
        self.locks = locks or get_matching_locks()
        self.artists = ArtistRepository(session)

    def client_for(self, namespace: MatchNamespace) -> CatalogClient:
        """Catalog client of a namespace, created on first use."""
        if namespace not in self.clients:
            rate = self.matching.for_namespace(namespace).rate_limit
            self.clients[namespace] = get_catalog_client(
                namespace, limiter=shared_limiter(namespace, rate)
            )
        return self.clients[namespace]

    # =========================================================================
    # Batch matching
    # =========================================================================

    async def match_pending_artists(
        self, namespace: MatchNamespace, limit: int | None = None
    ) -> MatchBatchResult:
        """
        Match up to ``limit`` PENDING artists, oldest first.

        Artists are processed one at a time. A lookup failure is recorded as
        an ERROR outcome and leaves the artist PENDING for the next batch.
        An artist an operator resolved while its lookup was in flight keeps
        the operator's state and is reported as SKIPPED.

        Args:
            namespace: Identity namespace to match in
            limit: Batch size (defaults to the configured batch limit)

        Returns:
            MatchBatchResult with per-artist outcomes and current stats

        Raises:
            ValidationError: limit below 1
            ConflictError: A batch for this namespace is already running
        """
        limit = self.matching.batch_limit if limit is None else limit
        if limit < 1:
            raise ValidationError("limit must be at least 1")

        ns_config = self.matching.for_namespace(namespace)
        result = MatchBatchResult(namespace=namespace)
        async with self.locks.hold(namespace.value, "matching", bind=self.session.get_bind()):
            pending = self.artists.list_pending(namespace, limit)
            if pending:
                client = self.client_for(namespace)

            for index, artist in enumerate(pending):
                outcome = await self._match_one(
                    client, namespace, artist, ns_config.confidence_threshold
                )
                result.outcomes.append(outcome)
                self.session.commit()
                if ns_config.delay_seconds > 0 and index < len(pending) - 1:
                    await asyncio.sleep(ns_config.delay_seconds)

        result.stats = self.get_matching_stats(namespace)
        logger.info(
            f"{namespace.value} matching: {result.matched} matched, "
            f"{result.no_match} no match, {result.errors} errors, {result.skipped} skipped"
        )
        return result

    def _save_if_pending(
        self, artist: Artist, namespace: MatchNamespace, outcome: ArtistMatchOutcome
    ) -> ArtistMatchOutcome:
        if self.artists.save_match_state(artist, namespace, only_if_pending=True) is None:
            logger.info(
                f"Skipped '{artist.name}': {namespace.value} state changed during lookup"
            )
            return ArtistMatchOutcome(
                artist_id=artist.id, name=artist.name, outcome=MatchOutcome.SKIPPED
            )
        return outcome

    async def _match_one(
        self,
        client: CatalogClient,
        namespace: MatchNamespace,
        artist: Artist,
        threshold: float,
    ) -> ArtistMatchOutcome:
        try:
            candidates = await client.search_artists(artist.name, self.matching.search_limit)
            ranked = score_candidates(artist.name, candidates, self.matching.min_candidate_score)
            best, confidence = ranked[0] if ranked else (None, 0.0)
            accepted = best is not None and confidence > threshold
            if accepted:
                details = await client.get_artist(best.id) or best
        except Exception as e:
            logger.exception(f"{namespace.value} lookup failed for '{artist.name}'")
            message = getattr(e, "message", None) or str(e) or type(e).__name__
            setattr(artist, f"{namespace.value}_error", message)
            return self._save_if_pending(
                artist,
                namespace,
                ArtistMatchOutcome(
                    artist_id=artist.id,
                    name=artist.name,
                    outcome=MatchOutcome.ERROR,
                    error=message,
                ),
            )

        if not accepted:
            self._clear(artist, namespace, MatchStatus.NO_MATCH)
            setattr(artist, f"{namespace.value}_confidence", round(confidence, 4) if best else None)
            outcome = self._save_if_pending(
                artist,
                namespace,
                ArtistMatchOutcome(
                    artist_id=artist.id,
                    name=artist.name,
                    outcome=MatchOutcome.NO_MATCH,
                    confidence=round(confidence, 4) if best else None,
                    external_id=best.id if best else None,
                    external_name=best.name if best else None,
                ),
            )
            if outcome.outcome == MatchOutcome.NO_MATCH:
                logger.info(
                    f"No {namespace.value} match for '{artist.name}'"
                    + (f" (best '{best.name}' at {confidence:.2f})" if best else "")
                )
            return outcome

        self._apply(artist, namespace, details, round(confidence, 4))
        return self._save_if_pending(
            artist,
            namespace,
            ArtistMatchOutcome(
                artist_id=artist.id,
                name=artist.name,
                outcome=MatchOutcome.MATCHED,
                confidence=round(confidence, 4),
                external_id=details.id,
                external_name=details.name,
            ),
        )

    def _apply(
        self,
        artist: Artist,
        namespace: MatchNamespace,
        record: CatalogArtist,
        confidence: float,
    ) -> None:
        prefix = namespace.value
        setattr(artist, f"{prefix}_id", record.id)
        setattr(artist, f"{prefix}_status", MatchStatus.MATCHED)
        setattr(artist, f"{prefix}_confidence", confidence)
        setattr(artist, f"{prefix}_name", record.name)
        setattr(artist, _LIST_FIELD[namespace], list(record.genres))
        setattr(artist, f"{prefix}_matched_at", datetime.now(UTC))
        setattr(artist, f"{prefix}_error", None)
        if namespace == MatchNamespace.SPOTIFY:
            artist.spotify_popularity = record.popularity

    def _clear(self, artist: Artist, namespace: MatchNamespace, status: MatchStatus) -> None:
        prefix = namespace.value
        setattr(artist, f"{prefix}_id", None)
        setattr(artist, f"{prefix}_status", status)
        setattr(artist, f"{prefix}_confidence", None)
        setattr(artist, f"{prefix}_name", None)
        setattr(artist, _LIST_FIELD[namespace], [])
        setattr(artist, f"{prefix}_matched_at", None)
        setattr(artist, f"{prefix}_error", None)
        if namespace == MatchNamespace.SPOTIFY:
            artist.spotify_popularity = None

    # =========================================================================
    # Manual actions
    # =========================================================================

    async def manually_match_artist(
        self, namespace: MatchNamespace, artist_id: UUID | str, external_id: str
    ) -> Artist:
        """
        Link an artist to a catalog id chosen by an operator.

        Always ends MATCHED with confidence 1.0, whatever the prior state.

        Raises:
            NotFoundError: Unknown artist, or the catalog has no such id
            ValidationError: Blank external id
        """
        if not external_id or not external_id.strip():
            raise ValidationError("external_id is required")
        artist = self.artists.require(artist_id)

        record = await self.client_for(namespace).get_artist(external_id.strip())
        if record is None:
            raise NotFoundError(f"{namespace.value} artist", external_id)

        self._apply(artist, namespace, record, 1.0)
        saved = self.artists.save_match_state(artist, namespace)
        self.session.commit()
        logger.info(f"Manually matched '{artist.name}' to {namespace.value} {record.id}")
        return saved

    def mark_artist_no_match(self, namespace: MatchNamespace, artist_id: UUID | str) -> Artist:
        """Mark an artist as having no catalog entry, clearing any match."""
        artist = self.artists.require(artist_id)
        self._clear(artist, namespace, MatchStatus.NO_MATCH)
        saved = self.artists.save_match_state(artist, namespace)
        self.session.commit()
        logger.info(f"Marked '{artist.name}' as no {namespace.value} match")
        return saved

    def reset_artist_match(self, namespace: MatchNamespace, artist_id: UUID | str) -> Artist:
        """Return an artist to PENDING so the next batch retries it."""
        artist = self.artists.require(artist_id)
        self._clear(artist, namespace, MatchStatus.PENDING)
        saved = self.artists.save_match_state(artist, namespace)
        self.session.commit()
        logger.info(f"Reset {namespace.value} match of '{artist.name}'")
        return saved

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_matching_stats(self, namespace: MatchNamespace) -> MatchingStats:
        """Counts by match status, read from the database on every call."""
        return self.artists.count_by_status(namespace)
