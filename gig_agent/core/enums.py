"""Enums for sources, scraper versions, runs and artist matching."""

from enum import Enum


class SourceType(str, Enum):
    """How a source produces events."""

    SCRAPER = "scraper"
    MANUAL = "manual"
    API = "api"


class SourceCategory(str, Enum):
    """What kind of origin a source represents."""

    VENUE = "venue"
    ARTIST = "artist"
    OTHER = "other"


class VersionOrigin(str, Enum):
    """How a scraper version came to exist."""

    AI_GENERATED = "ai_generated"
    MANUAL_EDIT = "manual_edit"
    ROLLBACK = "rollback"


class RunStatus(str, Enum):
    """Outcome of an ingestion run."""

    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class MatchStatus(str, Enum):
    """Match state of an artist within one external namespace."""

    PENDING = "pending"
    MATCHED = "matched"
    NO_MATCH = "no_match"


class MatchNamespace(str, Enum):
    """External identity namespaces an artist is matched against."""

    MUSICBRAINZ = "musicbrainz"
    SPOTIFY = "spotify"


class MatchOutcome(str, Enum):
    """Per-artist result of one matching attempt."""

    MATCHED = "matched"
    NO_MATCH = "no_match"
    ERROR = "error"
    SKIPPED = "skipped"  # changed by someone else mid-batch


class MergeAction(str, Enum):
    """What the merge engine did with one scraped record."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    DROPPED = "dropped"
