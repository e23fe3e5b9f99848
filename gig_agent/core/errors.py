"""Error taxonomy shared by the pipeline, the CLI and the web API.

Callers distinguish four kinds of failure:

- ``ValidationError``: malformed input, never retried.
- ``NotFoundError``: an unknown source, version, artist, event or playlist id.
- ``ExternalServiceError``: a scraper target or external catalog failed after
  the retry policy was exhausted.
- ``ConflictError``: an overlapping run or activation is already in progress.
"""

from __future__ import annotations


class GigAgentError(Exception):
    """Base class for all expected pipeline errors."""

    code = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        """Serialize for API responses."""
        return {"error": self.code, "message": self.message}


class ValidationError(GigAgentError):
    """Malformed input to an operation."""

    code = "validation_error"


class NotFoundError(GigAgentError):
    """An entity id does not exist."""

    code = "not_found"

    def __init__(self, entity: str, entity_id: str, message: str | None = None) -> None:
        super().__init__(message or f"{entity} '{entity_id}' not found")
        self.entity = entity
        self.entity_id = entity_id


class NoActiveVersionError(NotFoundError):
    """A scraper source has no active version to run."""

    code = "no_active_version"

    def __init__(self, source_id: str) -> None:
        super().__init__(
            "ScraperVersion",
            source_id,
            f"Source '{source_id}' has no active scraper version",
        )
        self.source_id = source_id


class ExternalServiceError(GigAgentError):
    """An external service was unreachable or returned an error."""

    code = "external_service_error"

    def __init__(
        self,
        service: str,
        message: str,
        status_code: int | None = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(f"{service}: {message}")
        self.service = service
        self.status_code = status_code
        self.retryable = retryable


class ScraperExecutionError(ExternalServiceError):
    """Scraper code failed, timed out or produced unreadable output."""

    code = "scraper_execution_error"

    def __init__(self, message: str, timed_out: bool = False) -> None:
        super().__init__("scraper", message)
        self.timed_out = timed_out


class ConflictError(GigAgentError):
    """Another run or activation for the same source is already in progress."""

    code = "conflict"


class DuplicateVersionError(ConflictError):
    """New scraper code is identical to the currently active version."""

    code = "duplicate_version"

    def __init__(self, source_id: str, active_version_number: int) -> None:
        super().__init__(
            f"Code is identical to active version {active_version_number} "
            f"of source '{source_id}'"
        )
        self.source_id = source_id
        self.active_version_number = active_version_number
