"""
Background Jobs Module
======================

Defines arq tasks for asynchronous ingestion, artist matching and playlist
sync. Uses Redis as the job queue backend.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from arq import create_pool
from arq.connections import RedisSettings
from arq.jobs import Job
from arq.jobs import JobStatus as ArqJobStatus

from gig_agent.core.enums import MatchNamespace, RunStatus
from gig_agent.core.errors import GigAgentError
from gig_agent.db.engine import get_session
from gig_agent.ingestion.coordinator import IngestionCoordinator
from gig_agent.ingestion.registry import get_default_registry

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    """Status of a background job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class JobResult:
    """Result of a background job."""

    job_id: str
    task: str
    status: JobStatus
    started_at: datetime | None = None
    completed_at: datetime | None = None
    details: list[dict[str, Any]] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    duration_seconds: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "job_id": self.job_id,
            "task": self.task,
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "details": self.details,
            "errors": self.errors,
            "duration_seconds": self.duration_seconds,
        }

    def finish(self) -> dict[str, Any]:
        """Stamp completion time and serialize."""
        self.completed_at = datetime.now(UTC)
        if self.started_at:
            self.duration_seconds = (self.completed_at - self.started_at).total_seconds()
        return self.to_dict()


def get_redis_settings() -> RedisSettings:
    """Get Redis connection settings from environment."""
    return RedisSettings(
        host=os.environ.get("REDIS_HOST", "localhost"),
        port=int(os.environ.get("REDIS_PORT", "6379")),
        database=int(os.environ.get("REDIS_DB", "0")),
    )


def _start(ctx: dict[str, Any], task: str) -> JobResult:
    return JobResult(
        job_id=ctx.get("job_id", str(uuid4())),
        task=task,
        status=JobStatus.RUNNING,
        started_at=datetime.now(UTC),
    )


def _coordinator(session) -> IngestionCoordinator:
    registry = get_default_registry()
    return IngestionCoordinator(
        session,
        global_config=registry.global_config,
        merge_config=registry.merge,
    )


async def ingest_source(ctx: dict[str, Any], source_id: str) -> dict[str, Any]:
    """
    Run production ingestion for one source.

    Args:
        ctx: arq context (contains Redis connection)
        source_id: Source to ingest

    Returns:
        JobResult as dictionary
    """
    result = _start(ctx, "ingest_source")
    try:
        with get_session() as session:
            run = await _coordinator(session).run_ingestion(source_id)
        result.details.append(run.to_dict())
        if run.success:
            result.status = JobStatus.COMPLETED
        else:
            result.status = JobStatus.FAILED
            result.errors.append(run.error or "ingestion failed")
    except GigAgentError as e:
        logger.warning(f"Ingestion job for {source_id} failed: {e.message}")
        result.status = JobStatus.FAILED
        result.errors.append(e.message)
    except Exception as e:
        logger.exception(f"Ingestion job failed: {e}")
        result.status = JobStatus.FAILED
        result.errors.append(str(e))
    return result.finish()


async def ingest_all_sources(ctx: dict[str, Any]) -> dict[str, Any]:
    """Run every active source sequentially."""
    result = _start(ctx, "ingest_all_sources")
    try:
        with get_session() as session:
            runs = await _coordinator(session).run_all()
        for run in runs:
            result.details.append(run.to_dict())
            if run.run_status != RunStatus.SUCCESS:
                result.errors.append(f"{run.source_slug}: {run.error}")
        result.status = JobStatus.COMPLETED
    except Exception as e:
        logger.exception(f"Ingest-all job failed: {e}")
        result.status = JobStatus.FAILED
        result.errors.append(str(e))
    return result.finish()


async def match_artists(
    ctx: dict[str, Any], namespace: str, limit: int | None = None
) -> dict[str, Any]:
    """Match a batch of PENDING artists in one namespace."""
    from gig_agent.services.identity import IdentityResolver

    result = _start(ctx, "match_artists")
    try:
        with get_session() as session:
            resolver = IdentityResolver(session, matching=get_default_registry().matching)
            batch = await resolver.match_pending_artists(MatchNamespace(namespace), limit)
        result.details.append(batch.to_dict())
        result.status = JobStatus.COMPLETED
    except Exception as e:
        logger.exception(f"Artist matching job failed: {e}")
        result.status = JobStatus.FAILED
        result.errors.append(str(e))
    return result.finish()


async def sync_playlists(ctx: dict[str, Any]) -> dict[str, Any]:
    """Sync every enabled playlist."""
    from gig_agent.services.playlist_service import PlaylistSyncService

    result = _start(ctx, "sync_playlists")
    try:
        with get_session() as session:
            service = PlaylistSyncService(session, config=get_default_registry().playlists)
            synced = await service.sync_all_playlists()
        for item in synced:
            result.details.append(item.to_dict())
            if not item.success:
                result.errors.append(f"{item.playlist_id}: {item.error}")
        result.status = JobStatus.COMPLETED
    except Exception as e:
        logger.exception(f"Playlist sync job failed: {e}")
        result.status = JobStatus.FAILED
        result.errors.append(str(e))
    return result.finish()


async def _enqueue(task: str, *args: Any) -> str:
    redis = await create_pool(get_redis_settings())
    try:
        job = await redis.enqueue_job(task, *args)
    finally:
        await redis.close()
    if job is None:
        raise GigAgentError(f"Job '{task}' is already queued")
    return job.job_id


async def enqueue_ingestion(source_id: str) -> str:
    """
    Enqueue an ingestion job for async processing.

    Args:
        source_id: Source to ingest

    Returns:
        Job ID
    """
    return await _enqueue("ingest_source", source_id)


async def enqueue_ingest_all() -> str:
    """Enqueue a run of every active source."""
    return await _enqueue("ingest_all_sources")


async def enqueue_matching(namespace: str, limit: int | None = None) -> str:
    """Enqueue an artist matching batch."""
    return await _enqueue("match_artists", namespace, limit)


async def enqueue_playlist_sync() -> str:
    """Enqueue a sync of all enabled playlists."""
    return await _enqueue("sync_playlists")


async def get_job_status(job_id: str) -> dict[str, Any] | None:
    """
    Get the status of a background job.

    Args:
        job_id: Job ID to look up

    Returns:
        Job info dict, or None if not found
    """
    redis = await create_pool(get_redis_settings())
    try:
        job = Job(job_id, redis)
        status = await job.status()
        if status == ArqJobStatus.not_found:
            return None
        info = await job.result_info()
    finally:
        await redis.close()

    return {
        "job_id": job_id,
        "status": status.value,
        "result": info.result if info else None,
    }


class WorkerSettings:
    """arq worker settings."""

    functions = [ingest_source, ingest_all_sources, match_artists, sync_playlists]
    redis_settings = get_redis_settings()
    max_jobs = 5
    job_timeout = 3600  # 1 hour
    keep_result = 86400  # 24 hours
