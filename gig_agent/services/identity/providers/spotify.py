"""Spotify catalog provider implementation."""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from gig_agent.core.enums import MatchNamespace
from gig_agent.core.errors import ValidationError
from gig_agent.ingestion.crawler import TokenBucket, request_with_retries
from gig_agent.services.identity.client import CatalogArtist, CatalogClient, shared_limiter

logger = logging.getLogger(__name__)

API_BASE = "https://api.spotify.com/v1"
TOKEN_URL = "https://accounts.spotify.com/api/token"

# Tokens are refreshed this many seconds before they expire
TOKEN_EXPIRY_MARGIN = 300
# Spotify accepts at most 100 track URIs per playlist request
PLAYLIST_BATCH_SIZE = 100


def _batches(items: list[str], size: int = PLAYLIST_BATCH_SIZE) -> list[list[str]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


def _to_catalog_artist(item: dict[str, Any]) -> CatalogArtist:
    images = item.get("images") or []
    popularity = item.get("popularity")
    return CatalogArtist(
        id=item["id"],
        name=item.get("name", ""),
        score=(popularity or 0) / 100.0,
        genres=list(item.get("genres") or []),
        popularity=popularity,
        url=(item.get("external_urls") or {}).get("spotify"),
        image_url=images[0].get("url") if images else None,
        extra={"followers": (item.get("followers") or {}).get("total")},
    )


class SpotifyClient(CatalogClient):
    """Streaming catalog client: artist search plus playlist writes."""

    namespace = MatchNamespace.SPOTIFY

    def __init__(
        self,
        client_id: str | None,
        client_secret: str | None,
        user_token: str | None = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        limiter: TokenBucket | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        backoff_base: float = 1.0,
    ):
        """
        Initialize the Spotify client.

        Args:
            client_id: App client id (client-credentials flow for reads).
            client_secret: App client secret.
            user_token: User-scoped OAuth token, required for playlist writes.
            timeout: Request timeout in seconds.
            max_retries: Attempts per request for transient failures.
            limiter: Rate limiter (defaults to the process-wide Spotify one).
            transport: Optional httpx transport (for testing).
            backoff_base: Multiplier for the retry backoff delay.
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.user_token = user_token
        self.timeout = timeout
        self.max_retries = max_retries
        self.limiter = limiter or shared_limiter(self.namespace)
        self.transport = transport
        self.backoff_base = backoff_base
        self._token: str | None = None
        self._token_expires_at = 0.0

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def _request(
        self,
        method: str,
        url: str,
        token: str,
        allow_statuses: frozenset[int] = frozenset(),
        **kwargs: Any,
    ) -> httpx.Response:
        async with self._http() as client:
            return await request_with_retries(
                client,
                method,
                url,
                service="spotify",
                max_retries=self.max_retries,
                limiter=self.limiter,
                allow_statuses=allow_statuses,
                backoff_base=self.backoff_base,
                headers={"Authorization": f"Bearer {token}"},
                **kwargs,
            )

    async def get_access_token(self) -> str:
        """Client-credentials token, cached until shortly before expiry."""
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token
        if not self.client_id or not self.client_secret:
            raise ValidationError("Spotify client credentials are not configured")

        async with self._http() as client:
            response = await request_with_retries(
                client,
                "POST",
                TOKEN_URL,
                service="spotify",
                max_retries=self.max_retries,
                backoff_base=self.backoff_base,
                data={"grant_type": "client_credentials"},
                auth=(self.client_id, self.client_secret),
            )
        data = response.json()
        self._token = data["access_token"]
        self._token_expires_at = (
            time.monotonic() + int(data.get("expires_in", 3600)) - TOKEN_EXPIRY_MARGIN
        )
        return self._token

    def _require_user_token(self) -> str:
        if not self.user_token:
            raise ValidationError(
                "SPOTIFY_ACCESS_TOKEN is required for playlist changes"
            )
        return self.user_token

    # =========================================================================
    # Artists
    # =========================================================================

    async def search_artists(self, name: str, limit: int = 5) -> list[CatalogArtist]:
        token = await self.get_access_token()
        response = await self._request(
            "GET",
            f"{API_BASE}/search",
            token,
            params={"q": f"artist:{name}", "type": "artist", "limit": limit},
        )
        items = (response.json().get("artists") or {}).get("items") or []
        return [_to_catalog_artist(item) for item in items]

    async def get_artist(self, external_id: str) -> CatalogArtist | None:
        token = await self.get_access_token()
        response = await self._request(
            "GET",
            f"{API_BASE}/artists/{external_id}",
            token,
            allow_statuses=frozenset({400, 404}),
        )
        if response.status_code in (400, 404):
            return None
        return _to_catalog_artist(response.json())

    async def get_top_tracks(self, artist_id: str, market: str = "US") -> list[str]:
        """Track URIs of an artist's top tracks, most popular first."""
        token = await self.get_access_token()
        response = await self._request(
            "GET",
            f"{API_BASE}/artists/{artist_id}/top-tracks",
            token,
            params={"market": market},
        )
        return [t["uri"] for t in response.json().get("tracks") or [] if t.get("uri")]

    # =========================================================================
    # Playlists
    # =========================================================================

    async def add_tracks(self, playlist_id: str, uris: list[str]) -> None:
        """Append tracks to a playlist in batches of 100."""
        token = self._require_user_token()
        for batch in _batches(uris):
            await self._request(
                "POST", f"{API_BASE}/playlists/{playlist_id}/tracks", token, json={"uris": batch}
            )

    async def remove_tracks(self, playlist_id: str, uris: list[str]) -> None:
        """Remove every occurrence of the tracks from a playlist."""
        token = self._require_user_token()
        for batch in _batches(uris):
            await self._request(
                "DELETE",
                f"{API_BASE}/playlists/{playlist_id}/tracks",
                token,
                json={"tracks": [{"uri": uri} for uri in batch]},
            )

    async def replace_tracks(self, playlist_id: str, uris: list[str]) -> None:
        """Set a playlist's full track list in the given order."""
        token = self._require_user_token()
        batches = _batches(uris) or [[]]
        await self._request(
            "PUT",
            f"{API_BASE}/playlists/{playlist_id}/tracks",
            token,
            json={"uris": batches[0]},
        )
        for batch in batches[1:]:
            await self._request(
                "POST", f"{API_BASE}/playlists/{playlist_id}/tracks", token, json={"uris": batch}
            )
        logger.info(f"Replaced playlist {playlist_id} with {len(uris)} tracks")

