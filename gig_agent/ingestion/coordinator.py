"""
Ingestion Coordinator
=====================

Runs one source end to end:
1. Load the source and, for version-backed scrapers, its active version
2. Execute the scraper unit under a timeout, holding the source's lock
3. Normalize the raw output in the venue's timezone
4. Merge the batch into the catalog (one transaction)
5. Record the run on the source and in the run history

A failed or timed-out scrape never reaches the catalog; the failure is
recorded and returned as a FAILED run instead of raised.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from gig_agent.core.enums import RunStatus, SourceType
from gig_agent.core.errors import GigAgentError, NoActiveVersionError, ValidationError
from gig_agent.core.schema import IngestionRun, ScrapedEvent, ScraperVersion, Source
from gig_agent.db.repositories import (
    IngestionRunRepository,
    ScraperVersionRepository,
    SourceRepository,
    VenueRepository,
)
from gig_agent.ingestion.locks import LockManager, get_source_locks
from gig_agent.ingestion.merge import MergeEngine, MergeResult
from gig_agent.ingestion.normalizer import Normalizer
from gig_agent.ingestion.registry import GlobalConfig, MergeConfig
from gig_agent.ingestion.scrapers import BaseScraper, get_scraper

logger = logging.getLogger(__name__)

# Extra seconds allowed beyond the scraper's own timeout before abandoning it
TIMEOUT_GRACE_SECONDS = 5.0


@dataclass
class IngestionResult:
    """Outcome of one production ingestion run."""

    source_id: UUID
    source_slug: str
    run_status: RunStatus
    run_id: UUID | None = None
    version_number: int | None = None
    events: list[ScrapedEvent] = field(default_factory=list)
    merge: MergeResult | None = None
    error: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def success(self) -> bool:
        return self.run_status == RunStatus.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "source_id": str(self.source_id),
            "source_slug": self.source_slug,
            "run_status": self.run_status.value,
            "run_id": str(self.run_id) if self.run_id else None,
            "version_number": self.version_number,
            "event_count": len(self.events),
            "merge": self.merge.to_dict() if self.merge else None,
            "error": self.error,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class IngestionCoordinator:
    """Runs sources through scrape, normalize and merge."""

    def __init__(
        self,
        session: Session,
        global_config: GlobalConfig | None = None,
        merge_config: MergeConfig | None = None,
        locks: LockManager | None = None,
        scrapers: dict[SourceType, BaseScraper] | None = None,
        now: datetime | None = None,
    ):
        """
        Initialize the coordinator.

        Args:
            session: Database session
            global_config: Timeouts, retries and output limits
            merge_config: Dedup and conflict tunables
            locks: Per-source lock manager (defaults to the process-wide one)
            scrapers: Scraper overrides by source type (defaults from the registry)
            now: Reference time for normalization and merging (defaults to now)
        """
        self.session = session
        self.global_config = global_config or GlobalConfig()
        self.merge_config = merge_config or MergeConfig()
        self.locks = locks or get_source_locks()
        self.scrapers = scrapers or {}
        self._now = now
        self.sources = SourceRepository(session)
        self.versions = ScraperVersionRepository(session)
        self.runs = IngestionRunRepository(session)

    def _scraper_for(self, source: Source) -> BaseScraper:
        scraper = self.scrapers.get(source.type)
        if scraper is None:
            scraper = get_scraper(source.type, global_config=self.global_config)
        if scraper is None:
            raise ValidationError(f"No scraper available for source type '{source.type.value}'")
        return scraper

    def _utc_now(self) -> datetime:
        return self._now or datetime.now(UTC)

    async def run_ingestion(self, source_id: UUID | str) -> IngestionResult:
        """
        Run a source's active scraper and merge its output.

        Args:
            source_id: Source to run

        Returns:
            IngestionResult; scrape and merge failures come back as FAILED runs

        Raises:
            NotFoundError: Unknown source
            NoActiveVersionError: Version-backed source without an active version
                (recorded on the source first)
            ValidationError: Source is disabled or has no scraper
            ConflictError: A run or test of this source is in progress
        """
        source = self.sources.require(source_id)
        if not source.is_active:
            raise ValidationError(f"Source '{source.slug}' is disabled")
        scraper = self._scraper_for(source)

        version = self.versions.get_active(source.id)
        if scraper.REQUIRES_VERSION and version is None:
            error = NoActiveVersionError(str(source.id))
            self._record_failure_without_run(source, error.message)
            logger.warning(f"Ingestion of {source.slug} skipped: {error.message}")
            raise error

        async with self.locks.hold(source.id, "ingestion", bind=self.session.get_bind()):
            return await self._run_locked(source, scraper, version)

    def _record_failure_without_run(self, source: Source, error: str) -> None:
        now = self._utc_now()
        self.runs.save(
            IngestionRun(
                source_id=source.id,
                status=RunStatus.FAILED,
                started_at=now,
                finished_at=now,
                error=error,
            )
        )
        self.sources.record_run(source.id, RunStatus.FAILED, error=error, run_at=now)
        self.session.commit()

    async def _run_locked(
        self, source: Source, scraper: BaseScraper, version: ScraperVersion | None
    ) -> IngestionResult:
        started_at = self._utc_now()
        run = IngestionRun(
            source_id=source.id,
            version_id=version.id if version else None,
            status=RunStatus.RUNNING,
            started_at=started_at,
        )
        self.runs.save(run)
        self.session.commit()

        result = IngestionResult(
            source_id=source.id,
            source_slug=source.slug,
            run_status=RunStatus.RUNNING,
            run_id=run.id,
            version_number=version.version_number if version else None,
            started_at=started_at,
        )
        timeout = float(self.global_config.scraper_timeout)

        logger.info(f"Running ingestion for {source.slug}")
        try:
            raw_events = await asyncio.wait_for(
                scraper.scrape(source, version, timeout=timeout),
                timeout=timeout + TIMEOUT_GRACE_SECONDS,
            )
        except TimeoutError:
            return self._finish(run, result, error=f"Scraper timed out after {timeout:g}s")
        except GigAgentError as e:
            return self._finish(run, result, error=e.message)
        except Exception as e:
            logger.exception(f"Scraper for {source.slug} raised")
            return self._finish(run, result, error=f"{type(e).__name__}: {e}")

        venue = None
        timezone = "UTC"
        if source.venue_id is not None:
            venue = VenueRepository(self.session).get_by_id(source.venue_id)
            if venue is not None:
                timezone = venue.timezone

        normalizer = Normalizer(timezone=timezone, now=self._now, base_url=source.website)
        result.events = normalizer.normalize_events(raw_events)

        engine = MergeEngine(self.session, self.merge_config, now=self._now)
        try:
            result.merge = engine.merge_batch(result.events, source, default_venue=venue)
        except Exception as e:
            # The engine has already rolled the batch back
            return self._finish(run, result, error=f"Merge failed: {type(e).__name__}: {e}")

        return self._finish(run, result)

    def _finish(
        self, run: IngestionRun, result: IngestionResult, error: str | None = None
    ) -> IngestionResult:
        finished_at = self._utc_now()
        status = RunStatus.FAILED if error else RunStatus.SUCCESS

        run.status = status
        run.finished_at = finished_at
        run.error = error
        run.event_count = len(result.events)
        if result.merge is not None:
            run.created_count = result.merge.created
            run.updated_count = result.merge.updated
            run.dropped_count = result.merge.dropped
        self.runs.save(run)
        self.sources.record_run(run.source_id, status, error=error, run_at=finished_at)
        self.session.commit()

        result.run_status = status
        result.error = error
        result.finished_at = finished_at
        if error:
            logger.warning(f"Ingestion of {result.source_slug} failed: {error}")
        else:
            logger.info(
                f"Ingestion of {result.source_slug} succeeded: {len(result.events)} events"
            )
        return result

    async def run_all(self) -> list[IngestionResult]:
        """
        Run every active source sequentially, highest precedence first.

        Sources that cannot start (no active version, already running) are
        reported as FAILED results instead of aborting the sweep.
        """
        results = []
        for source in self.sources.list_all(active_only=True):
            try:
                results.append(await self.run_ingestion(source.id))
            except GigAgentError as e:
                results.append(
                    IngestionResult(
                        source_id=source.id,
                        source_slug=source.slug,
                        run_status=RunStatus.FAILED,
                        error=e.message,
                    )
                )
        return results


async def run_ingestion(
    session: Session, source_id: UUID | str, **kwargs: Any
) -> IngestionResult:
    """Run one source with a fresh coordinator."""
    return await IngestionCoordinator(session, **kwargs).run_ingestion(source_id)
