"""Cross-catalog identity resolution for artists."""

from gig_agent.services.identity.client import CatalogArtist, CatalogClient, get_catalog_client
from gig_agent.services.identity.resolver import (
    ArtistMatchOutcome,
    IdentityResolver,
    MatchBatchResult,
)

__all__ = [
    "CatalogArtist",
    "CatalogClient",
    "get_catalog_client",
    "ArtistMatchOutcome",
    "IdentityResolver",
    "MatchBatchResult",
]
