"""External music catalog client interface and provider factory."""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from gig_agent.core.enums import MatchNamespace
from gig_agent.core.errors import ValidationError
from gig_agent.ingestion.crawler import TokenBucket
from gig_agent.ingestion.registry import MatchingConfig, RateLimitConfig

_shared_limiters: dict[MatchNamespace, TokenBucket] = {}


def shared_limiter(
    namespace: MatchNamespace, rate: RateLimitConfig | None = None
) -> TokenBucket:
    """
    Process-wide rate limiter of a catalog.

    Every client of a namespace draws from the same bucket, so parallel
    batches and playlist syncs stay under the catalog's ceiling together.

    Args:
        namespace: Catalog the bucket guards
        rate: Ceiling applied when the bucket is first created (defaults to
            the namespace's built-in matching settings)
    """
    limiter = _shared_limiters.get(namespace)
    if limiter is None:
        rate = rate or MatchingConfig().for_namespace(namespace).rate_limit
        limiter = TokenBucket(rate.requests_per_second, rate.burst_limit)
        _shared_limiters[namespace] = limiter
    return limiter


def reset_shared_limiters() -> None:
    """Drop the shared limiters (useful for testing)."""
    _shared_limiters.clear()


class CatalogArtist(BaseModel):
    """An artist record as returned by an external catalog."""

    id: str
    name: str
    score: float = 0.0
    genres: list[str] = Field(default_factory=list)
    popularity: int | None = None
    url: str | None = None
    image_url: str | None = None
    extra: dict[str, Any] = Field(default_factory=dict)


class CatalogClient(ABC):
    """Abstract base class for external identity namespaces."""

    namespace: MatchNamespace

    @abstractmethod
    async def search_artists(self, name: str, limit: int = 5) -> list[CatalogArtist]:
        """
        Search the catalog for artists by name.

        Args:
            name: Artist name as it appears locally.
            limit: Maximum number of candidates.

        Returns:
            Candidates in the catalog's own relevance order.

        Raises:
            ExternalServiceError: If the catalog is unreachable or errors.
        """

    @abstractmethod
    async def get_artist(self, external_id: str) -> CatalogArtist | None:
        """
        Fetch one artist directly by its catalog id.

        Returns:
            The artist, or None if the id does not exist.

        Raises:
            ExternalServiceError: If the catalog is unreachable or errors.
        """


def get_catalog_client(namespace: MatchNamespace | str, **kwargs: Any) -> CatalogClient:
    """
    Factory function to get a catalog client for a namespace.

    Credentials come from the environment unless passed explicitly.

    Args:
        namespace: Identity namespace.
        **kwargs: Passed to the provider constructor.

    Returns:
        A CatalogClient for the namespace.

    Raises:
        ValidationError: If the namespace is unknown or credentials are missing.
    """
    if isinstance(namespace, str):
        try:
            namespace = MatchNamespace(namespace.lower())
        except ValueError:
            raise ValidationError(f"Unknown identity namespace: {namespace}") from None

    if namespace == MatchNamespace.MUSICBRAINZ:
        from gig_agent.services.identity.providers.musicbrainz import MusicBrainzClient

        kwargs.setdefault("user_agent", os.environ.get("MUSICBRAINZ_USER_AGENT"))
        return MusicBrainzClient(**kwargs)

    from gig_agent.services.identity.providers.spotify import SpotifyClient

    kwargs.setdefault("client_id", os.environ.get("SPOTIFY_CLIENT_ID"))
    kwargs.setdefault("client_secret", os.environ.get("SPOTIFY_CLIENT_SECRET"))
    kwargs.setdefault("user_token", os.environ.get("SPOTIFY_ACCESS_TOKEN"))
    if not kwargs["client_id"] or not kwargs["client_secret"]:
        raise ValidationError(
            "SPOTIFY_CLIENT_ID and SPOTIFY_CLIENT_SECRET environment variables are required"
        )
    return SpotifyClient(**kwargs)
