"""External catalog provider implementations."""

from gig_agent.services.identity.providers.musicbrainz import MusicBrainzClient
from gig_agent.services.identity.providers.spotify import SpotifyClient

__all__ = ["MusicBrainzClient", "SpotifyClient"]
