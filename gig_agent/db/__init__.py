"""Database initialization and persistence layer."""

from gig_agent.db.engine import (
    create_db_engine,
    get_database_url,
    get_engine,
    get_session,
    get_session_factory,
    init_db,
    reset_engine,
)
from gig_agent.db.models import (
    ArtistDB,
    Base,
    EventArtistDB,
    EventDB,
    EventSourceDB,
    FieldProvenanceDB,
    IngestionRunDB,
    LeaseDB,
    PlaylistDB,
    PlaylistTrackDB,
    RegionDB,
    ScraperVersionDB,
    SourceDB,
    VenueDB,
)
from gig_agent.db.repositories import (
    ArtistRepository,
    EventRepository,
    IngestionRunRepository,
    LeaseRepository,
    PlaylistRepository,
    RegionRepository,
    ScraperVersionRepository,
    SourceRepository,
    VenueRepository,
)

__all__ = [
    # Engine
    "create_db_engine",
    "get_database_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_db",
    "reset_engine",
    # Models
    "Base",
    "RegionDB",
    "VenueDB",
    "SourceDB",
    "ScraperVersionDB",
    "IngestionRunDB",
    "EventDB",
    "EventSourceDB",
    "FieldProvenanceDB",
    "EventArtistDB",
    "ArtistDB",
    "PlaylistDB",
    "PlaylistTrackDB",
    "LeaseDB",
    # Repositories
    "RegionRepository",
    "VenueRepository",
    "SourceRepository",
    "ScraperVersionRepository",
    "IngestionRunRepository",
    "EventRepository",
    "ArtistRepository",
    "PlaylistRepository",
    "LeaseRepository",
]
