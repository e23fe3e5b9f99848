"""Tests for background job tasks."""

from datetime import UTC, datetime
from pathlib import Path

import pytest
import yaml

from gig_agent.db.engine import get_session, init_db, reset_engine
from gig_agent.db.repositories import SourceRepository
from gig_agent.ingestion.jobs import (
    JobResult,
    JobStatus,
    WorkerSettings,
    ingest_all_sources,
    ingest_source,
    match_artists,
    sync_playlists,
)
from gig_agent.ingestion.locks import reset_source_locks
from gig_agent.ingestion.registry import get_default_registry, reset_default_registry

CONFIG = {
    "regions": [{"slug": "nyc", "name": "New York City"}],
    "venues": [{"slug": "village-vanguard", "name": "Village Vanguard", "region": "nyc"}],
    "sources": [
        {"slug": "village-vanguard", "priority": 10, "venue": "village-vanguard"},
        {
            "slug": "manual-entries",
            "type": "manual",
            "priority": 40,
            "config": {
                "events": [
                    {
                        "title": "New Year Gala",
                        "startsAt": "2099-12-31T21:00",
                        "sourceUrl": "https://manual.example/gala",
                        "venueName": "Village Vanguard",
                    }
                ]
            },
        },
    ],
}


@pytest.fixture
def source_ids(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Seed a temporary database and return source ids by slug."""
    config_path = tmp_path / "sources.yaml"
    config_path.write_text(yaml.safe_dump(CONFIG))
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'jobs.db'}")
    monkeypatch.setenv("SOURCES_CONFIG_PATH", str(config_path))
    reset_engine()
    reset_default_registry()
    reset_source_locks()
    init_db()

    with get_session() as session:
        get_default_registry().sync_to_db(session)
        session.commit()
        ids = {s.slug: str(s.id) for s in SourceRepository(session).list_all()}

    yield ids
    reset_engine()
    reset_default_registry()
    reset_source_locks()


class TestJobResult:
    """Tests for JobResult."""

    def test_finish_sets_duration(self) -> None:
        """Test that finishing stamps completion and duration."""
        result = JobResult(
            job_id="job-1",
            task="ingest_source",
            status=JobStatus.COMPLETED,
            started_at=datetime(2026, 10, 19, tzinfo=UTC),
        )

        data = result.finish()

        assert data["status"] == "completed"
        assert data["completed_at"] is not None
        assert data["duration_seconds"] > 0


class TestTasks:
    """Tests for the arq task functions."""

    @pytest.mark.asyncio
    async def test_ingest_source(self, source_ids: dict[str, str]) -> None:
        """Test a successful ingestion job."""
        data = await ingest_source({"job_id": "job-1"}, source_ids["manual-entries"])

        assert data["job_id"] == "job-1"
        assert data["status"] == "completed"
        assert data["details"][0]["merge"]["created"] == 1

    @pytest.mark.asyncio
    async def test_ingest_source_without_version(self, source_ids: dict[str, str]) -> None:
        """Test that pipeline errors fail the job instead of raising."""
        data = await ingest_source({"job_id": "job-2"}, source_ids["village-vanguard"])

        assert data["status"] == "failed"
        assert "no active scraper version" in data["errors"][0]

    @pytest.mark.asyncio
    async def test_ingest_all(self, source_ids: dict[str, str]) -> None:
        """Test that per-source failures are collected as errors."""
        data = await ingest_all_sources({"job_id": "job-3"})

        assert data["status"] == "completed"
        assert len(data["details"]) == 2
        assert len(data["errors"]) == 1
        assert data["errors"][0].startswith("village-vanguard:")

    @pytest.mark.asyncio
    async def test_match_without_pending_artists(self, source_ids: dict[str, str]) -> None:
        """Test that a batch with nothing pending completes."""
        data = await match_artists({"job_id": "job-4"}, "musicbrainz", 10)

        assert data["status"] == "completed"
        assert data["details"][0]["processed"] == 0

    @pytest.mark.asyncio
    async def test_match_unknown_namespace(self, source_ids: dict[str, str]) -> None:
        """Test that an unknown namespace fails the job."""
        data = await match_artists({"job_id": "job-5"}, "lastfm")
        assert data["status"] == "failed"

    @pytest.mark.asyncio
    async def test_sync_playlists_without_playlists(self, source_ids: dict[str, str]) -> None:
        """Test that syncing nothing completes."""
        data = await sync_playlists({"job_id": "job-6"})

        assert data["status"] == "completed"
        assert data["details"] == []


class TestWorkerSettings:
    """Tests for WorkerSettings."""

    def test_registers_every_task(self) -> None:
        """Test that the worker knows every task."""
        names = {f.__name__ for f in WorkerSettings.functions}
        assert names == {"ingest_source", "ingest_all_sources", "match_artists", "sync_playlists"}
