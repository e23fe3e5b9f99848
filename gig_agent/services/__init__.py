"""Application services for Gig Agent."""

from gig_agent.services.ai import GenerationOutcome, ScraperGenerator
from gig_agent.services.identity import IdentityResolver, MatchBatchResult
from gig_agent.services.playlist_service import PlaylistSyncResult, PlaylistSyncService

__all__ = [
    "GenerationOutcome",
    "ScraperGenerator",
    "IdentityResolver",
    "MatchBatchResult",
    "PlaylistSyncResult",
    "PlaylistSyncService",
]
