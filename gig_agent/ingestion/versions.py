"""
Scraper Version Service
=======================

Lifecycle of a source's scraper versions: create, test, activate and roll
back. Versions are immutable snapshots; only their test results and the
active flag ever change.

Test runs and production ingestion of the same source share one lock, so
the same external target is never hit by both at once.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from gig_agent.core.enums import VersionOrigin
from gig_agent.core.errors import (
    DuplicateVersionError,
    GigAgentError,
    ValidationError,
)
from gig_agent.core.schema import ScraperVersion, Source, VersionTestResults
from gig_agent.db.repositories import ScraperVersionRepository, SourceRepository, VenueRepository
from gig_agent.ingestion.analysis import analyze_fields, build_warnings, select_sample_events
from gig_agent.ingestion.crawler import compute_hash
from gig_agent.ingestion.locks import LockManager, get_source_locks
from gig_agent.ingestion.normalizer import Normalizer
from gig_agent.ingestion.registry import GlobalConfig
from gig_agent.ingestion.sandbox import MAX_DESCRIPTION_LENGTH, ensure_valid_code
from gig_agent.ingestion.scrapers import BaseScraper, SandboxScraper, get_scraper

logger = logging.getLogger(__name__)


def source_timezone(session: Session, source: Source) -> str:
    """Timezone of the source's venue, or UTC for venue-less sources."""
    if source.venue_id is None:
        return "UTC"
    venue = VenueRepository(session).get_by_id(source.venue_id)
    return venue.timezone if venue else "UTC"


class ScraperVersionService:
    """Service for managing versioned scraper code."""

    def __init__(
        self,
        session: Session,
        global_config: GlobalConfig | None = None,
        locks: LockManager | None = None,
        scraper: BaseScraper | None = None,
    ):
        """
        Initialize the version service.

        Args:
            session: SQLAlchemy session (operations commit on it)
            global_config: Timeouts and output limits
            locks: Per-source lock manager (defaults to the process-wide one)
            scraper: Scraper unit used for test runs (defaults by source type)
        """
        self.session = session
        self.global_config = global_config or GlobalConfig()
        self.locks = locks or get_source_locks()
        self._scraper = scraper
        self.sources = SourceRepository(session)
        self.versions = ScraperVersionRepository(session)

    def _scraper_for(self, source: Source) -> BaseScraper:
        if self._scraper is not None:
            return self._scraper
        scraper = get_scraper(source.type, global_config=self.global_config)
        return scraper or SandboxScraper(self.global_config)

    # =========================================================================
    # Create
    # =========================================================================

    def create_version(
        self,
        source_id: UUID | str,
        code: str,
        origin: VersionOrigin = VersionOrigin.MANUAL_EDIT,
        description: str | None = None,
    ) -> ScraperVersion:
        """
        Store new scraper code as the source's next version (inactive).

        Args:
            source_id: Owning source
            code: Python source defining scrape(config)
            origin: How the code came to exist
            description: Optional change note

        Returns:
            The created ScraperVersion

        Raises:
            NotFoundError: Unknown source
            ValidationError: Invalid code or overlong description
            DuplicateVersionError: Code is identical to the active version
        """
        source = self.sources.require(source_id)
        if description is not None and len(description) > MAX_DESCRIPTION_LENGTH:
            raise ValidationError(
                f"Description exceeds {MAX_DESCRIPTION_LENGTH} characters"
            )
        validation = ensure_valid_code(code)

        code_hash = compute_hash(code)
        active = self.versions.get_active(source.id)
        if active is not None and active.code_hash == code_hash:
            raise DuplicateVersionError(str(source.id), active.version_number)

        version = self.versions.create(
            ScraperVersion(
                source_id=source.id,
                version_number=self.versions.next_version_number(source.id),
                code=code,
                code_hash=code_hash,
                origin=origin,
                description=description,
            )
        )
        self.session.commit()

        for warning in validation.warnings:
            logger.warning(f"Version {version.version_number} of {source.slug}: {warning}")
        logger.info(
            f"Created version {version.version_number} of {source.slug} ({origin.value})"
        )
        return version

    # =========================================================================
    # Test
    # =========================================================================

    async def test_version(
        self,
        source_id: UUID | str,
        version_id: UUID | str,
        fixture: list[dict[str, Any]] | None = None,
    ) -> VersionTestResults:
        """
        Execute a version and record its results. Never activates.

        Args:
            source_id: Owning source
            version_id: Version to test
            fixture: Event dicts to analyze instead of executing the code

        Returns:
            VersionTestResults, stored on the version whether or not the run passed

        Raises:
            NotFoundError: Unknown source or version
            ConflictError: A run or test of this source is in progress
        """
        source = self.sources.require(source_id)
        version = self.versions.get_for_source(source.id, version_id)
        timeout = float(self.global_config.scraper_timeout)

        async with self.locks.hold(source.id, "test run", bind=self.session.get_bind()):
            started = time.monotonic()
            try:
                if fixture is not None:
                    events = list(fixture)
                else:
                    scraper = self._scraper_for(source)
                    events = await asyncio.wait_for(
                        scraper.scrape(source, version, timeout=timeout),
                        timeout=timeout + 5,
                    )
            except TimeoutError:
                results = VersionTestResults(
                    success=False,
                    error=f"Scraper timed out after {timeout:g}s",
                    execution_time_ms=int((time.monotonic() - started) * 1000),
                )
            except GigAgentError as e:
                results = VersionTestResults(
                    success=False,
                    error=e.message,
                    execution_time_ms=int((time.monotonic() - started) * 1000),
                )
            else:
                results = self._build_results(
                    source, events, int((time.monotonic() - started) * 1000)
                )

            self.versions.record_test(version.id, results, tested_at=datetime.now(UTC))
            self.session.commit()

        if results.success:
            logger.info(
                f"Tested version {version.version_number} of {source.slug}: "
                f"{results.event_count} events"
            )
        else:
            logger.warning(
                f"Test of version {version.version_number} of {source.slug} failed: "
                f"{results.error}"
            )
        return results

    def _build_results(
        self, source: Source, events: list[Any], execution_time_ms: int
    ) -> VersionTestResults:
        records = [e for e in events if isinstance(e, dict)]
        analysis = analyze_fields(records)

        normalizer = Normalizer(timezone=source_timezone(self.session, source), correct_years=False)
        without_time = sum(
            1
            for event in normalizer.normalize_events(records)
            if event.starts_at is not None and not event.has_time
        )
        warnings = build_warnings(analysis, events_without_time=without_time)
        if len(records) < len(events):
            warnings.append(f"{len(events) - len(records)} records were not objects")

        return VersionTestResults(
            success=True,
            execution_time_ms=execution_time_ms,
            event_count=len(records),
            sample_events=select_sample_events(records),
            fields_analysis=analysis,
            warnings=warnings,
        )

    # =========================================================================
    # Activate / rollback
    # =========================================================================

    async def activate_version(
        self, source_id: UUID | str, version_id: UUID | str
    ) -> ScraperVersion:
        """
        Make a version the source's only active version.

        Idempotent when the version is already active.

        Raises:
            NotFoundError: Unknown source or version
            ConflictError: Another operation on this source is in progress
        """
        source = self.sources.require(source_id)
        async with self.locks.hold(source.id, "activation", bind=self.session.get_bind()):
            version = self.versions.get_for_source(source.id, version_id)
            if version.is_active:
                return version
            try:
                activated = self.versions.set_active(source.id, version.id)
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise
        logger.info(f"Activated version {activated.version_number} of {source.slug}")
        return activated

    async def rollback_to_version(
        self, source_id: UUID | str, version_id: UUID | str
    ) -> ScraperVersion:
        """
        Copy a prior version's code into a new ROLLBACK version and activate it.

        History is never rewritten: the rollback gets the next version number.

        Raises:
            NotFoundError: Unknown source or version
            DuplicateVersionError: The prior version's code is already active
            ConflictError: Another operation on this source is in progress
        """
        source = self.sources.require(source_id)
        target = self.versions.get_for_source(source.id, version_id)
        created = self.create_version(
            source.id,
            target.code,
            origin=VersionOrigin.ROLLBACK,
            description=f"Rollback to version {target.version_number}",
        )
        return await self.activate_version(source.id, created.id)

    # =========================================================================
    # Queries
    # =========================================================================

    def list_versions(self, source_id: UUID | str) -> list[dict[str, Any]]:
        """Versions of a source, newest first, without their code."""
        source = self.sources.require(source_id)
        return [
            v.model_dump(mode="json", exclude={"code"})
            for v in self.versions.list_by_source(source.id)
        ]

    def get_version(self, source_id: UUID | str, version_id: UUID | str) -> ScraperVersion:
        """Get one version of a source, code included."""
        source = self.sources.require(source_id)
        return self.versions.get_for_source(source.id, version_id)

    def get_version_code(self, source_id: UUID | str, version_id: UUID | str) -> str:
        """Code payload of a version."""
        return self.get_version(source_id, version_id).code

