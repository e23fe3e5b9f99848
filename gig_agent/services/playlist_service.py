"""Playlist sync service.

Keeps managed streaming playlists in step with upcoming shows:
- Collects top tracks of matched artists with an upcoming event
  (4 tracks within a week, 3 within two weeks, otherwise 2)
- Orders them by the artist's soonest show
- Removes tracks whose artist no longer has an upcoming show in range
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from gig_agent.core.enums import MatchNamespace, MatchStatus
from gig_agent.core.errors import ExternalServiceError, GigAgentError, ValidationError
from gig_agent.core.schema import Playlist, PlaylistTrack
from gig_agent.db.repositories import ArtistRepository, EventRepository, PlaylistRepository
from gig_agent.ingestion.registry import PlaylistConfig
from gig_agent.services.identity.client import get_catalog_client
from gig_agent.services.identity.providers.spotify import SpotifyClient

logger = logging.getLogger(__name__)


def tracks_for_days(days_until: int) -> int:
    """Number of tracks an artist gets for a show this many days away."""
    if days_until <= 7:
        return 4
    if days_until <= 14:
        return 3
    return 2


@dataclass
class PlaylistSyncResult:
    """Result of syncing one playlist."""

    playlist_id: UUID
    name: str = ""
    success: bool = True
    added: int = 0
    removed: int = 0
    total: int = 0
    artists: int = 0
    events: int = 0
    warnings: list[str] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "playlist_id": str(self.playlist_id),
            "name": self.name,
            "success": self.success,
            "added": self.added,
            "removed": self.removed,
            "total": self.total,
            "artists": self.artists,
            "events": self.events,
            "warnings": self.warnings,
            "error": self.error,
        }


class PlaylistSyncService:
    """Service for syncing managed playlists with upcoming events."""

    def __init__(
        self,
        session: Session,
        config: PlaylistConfig | None = None,
        client: SpotifyClient | None = None,
        now: datetime | None = None,
    ):
        """
        Initialize the sync service.

        Args:
            session: Database session (operations commit on it)
            config: Market and default look-ahead
            client: Streaming catalog client (created from the environment when missing)
            now: Reference time (defaults to now)
        """
        self.session = session
        self.config = config or PlaylistConfig()
        self._client = client
        self._now = now
        self.playlists = PlaylistRepository(session)
        self.events = EventRepository(session)
        self.artists = ArtistRepository(session)

    @property
    def client(self) -> SpotifyClient:
        """Streaming client, created on first use."""
        if self._client is None:
            self._client = get_catalog_client(MatchNamespace.SPOTIFY)
        return self._client

    async def build_targets(
        self, playlist: Playlist, now: datetime, result: PlaylistSyncResult
    ) -> list[PlaylistTrack]:
        """
        Target track list for a playlist, soonest show first.

        An artist contributes once, at its soonest show in range. A failed
        top-tracks lookup skips that artist with a warning.
        """
        end = now + timedelta(days=playlist.days_ahead)
        events = self.events.list_upcoming(now, end, region_id=playlist.region_id)

        targets: list[PlaylistTrack] = []
        seen_artists: set[UUID] = set()
        seen_uris: set[str] = set()
        included_events: set[UUID] = set()

        for event in events:
            days_until = math.ceil((event.starts_at - now).total_seconds() / 86400)
            count = tracks_for_days(days_until)
            for artist in self.artists.list_for_event(event.id):
                if artist.id in seen_artists:
                    continue
                if artist.spotify_status != MatchStatus.MATCHED or not artist.spotify_id:
                    continue
                try:
                    uris = await self.client.get_top_tracks(artist.spotify_id, self.config.market)
                except ExternalServiceError as e:
                    result.warnings.append(f"Failed to get tracks for {artist.name}: {e.message}")
                    logger.warning(f"Top tracks lookup failed for {artist.name}: {e.message}")
                    continue

                seen_artists.add(artist.id)
                for uri in uris[:count]:
                    if uri in seen_uris:
                        continue
                    seen_uris.add(uri)
                    included_events.add(event.id)
                    targets.append(
                        PlaylistTrack(
                            playlist_id=playlist.id,
                            track_uri=uri,
                            artist_id=artist.id,
                            event_id=event.id,
                            position=len(targets),
                            added_at=now,
                        )
                    )

        result.artists = len(seen_artists)
        result.events = len(included_events)
        return targets

    async def sync_playlist(self, playlist_id: UUID | str) -> PlaylistSyncResult:
        """
        Bring one playlist in line with upcoming shows.

        Catalog failures are recorded on the playlist and returned as an
        unsuccessful result; stored tracks are left as they were.

        Raises:
            NotFoundError: Unknown playlist
            ValidationError: Playlist is disabled
        """
        playlist = self.playlists.require(playlist_id)
        if not playlist.enabled:
            raise ValidationError(f"Playlist '{playlist.name}' sync is disabled")

        now = self._now or datetime.now(UTC)
        result = PlaylistSyncResult(playlist_id=playlist.id, name=playlist.name)
        try:
            targets = await self.build_targets(playlist, now, result)
            target_uris = [t.track_uri for t in targets]
            current_uris = [t.track_uri for t in playlist.tracks]
            to_remove = [uri for uri in current_uris if uri not in set(target_uris)]
            to_add = [uri for uri in target_uris if uri not in set(current_uris)]

            if to_remove:
                await self.client.remove_tracks(playlist.spotify_playlist_id, to_remove)
            if to_add:
                await self.client.add_tracks(playlist.spotify_playlist_id, to_add)
            if target_uris:
                await self.client.replace_tracks(playlist.spotify_playlist_id, target_uris)
        except GigAgentError as e:
            self.session.rollback()
            self.playlists.record_sync(playlist.id, error=e.message)
            self.session.commit()
            logger.warning(f"Sync of playlist '{playlist.name}' failed: {e.message}")
            result.success = False
            result.error = e.message
            return result

        self.playlists.replace_tracks(playlist.id, targets)
        self.playlists.record_sync(playlist.id, synced_at=now)
        self.session.commit()

        result.added = len(to_add)
        result.removed = len(to_remove)
        result.total = len(targets)
        logger.info(
            f"Synced playlist '{playlist.name}': +{result.added} -{result.removed}, "
            f"{result.total} tracks"
        )
        return result

    async def sync_all_playlists(self) -> list[PlaylistSyncResult]:
        """Sync every enabled playlist; one failure never stops the rest."""
        results = []
        for playlist in self.playlists.list_enabled():
            try:
                results.append(await self.sync_playlist(playlist.id))
            except GigAgentError as e:
                results.append(
                    PlaylistSyncResult(
                        playlist_id=playlist.id,
                        name=playlist.name,
                        success=False,
                        error=e.message,
                    )
                )
        return results
