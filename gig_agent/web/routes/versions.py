"""Scraper version and ingestion routes.

JSON endpoints for the admin surface: list, create, test, activate and roll
back scraper versions of a source, and trigger an ingestion run.
"""

from typing import Any

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from gig_agent.core.enums import VersionOrigin
from gig_agent.ingestion.coordinator import IngestionCoordinator
from gig_agent.ingestion.jobs import enqueue_ingestion
from gig_agent.ingestion.versions import ScraperVersionService
from gig_agent.services.ai.generation import ScraperGenerator
from gig_agent.web.dependencies import RegistryDep, SessionDep

router = APIRouter(prefix="/api/sources", tags=["versions"])


class CreateVersionRequest(BaseModel):
    """Body of a new scraper version."""

    code: str
    description: str | None = None
    origin: VersionOrigin = VersionOrigin.MANUAL_EDIT


class VersionTestRequest(BaseModel):
    """Optional fixture events analyzed instead of executing the code."""

    fixture: list[dict[str, Any]] | None = None


class GenerateVersionRequest(BaseModel):
    """Inputs for AI scraper generation."""

    html_sample: str | None = None
    fetch_html: bool = True
    previous_version_id: str | None = None
    feedback: str | None = Field(default=None, max_length=5000)


def _version_service(session, registry) -> ScraperVersionService:
    return ScraperVersionService(session, global_config=registry.global_config)


@router.get("/{source_id}/versions")
async def list_versions(source_id: str, session: SessionDep, registry: RegistryDep) -> JSONResponse:
    """Versions of a source, newest first, without code."""
    versions = _version_service(session, registry).list_versions(source_id)
    return JSONResponse({"versions": versions})


@router.post("/{source_id}/versions")
async def create_version(
    source_id: str,
    body: CreateVersionRequest,
    session: SessionDep,
    registry: RegistryDep,
) -> JSONResponse:
    """Store new code as the source's next (inactive) version."""
    version = _version_service(session, registry).create_version(
        source_id, body.code, origin=body.origin, description=body.description
    )
    return JSONResponse(
        {"version": version.model_dump(mode="json", exclude={"code"})}, status_code=201
    )


@router.post("/{source_id}/versions/generate")
async def generate_version(
    source_id: str,
    body: GenerateVersionRequest,
    session: SessionDep,
    registry: RegistryDep,
) -> JSONResponse:
    """Ask the AI provider for a new scraper version. Never activates."""
    generator = ScraperGenerator(session, global_config=registry.global_config)
    outcome = await generator.generate(
        source_id,
        html_sample=body.html_sample,
        fetch_html=body.fetch_html,
        previous_version_id=body.previous_version_id,
        feedback=body.feedback,
    )
    if not outcome.success:
        return JSONResponse(
            {"error": "generation_failed", "message": outcome.error_message}, status_code=422
        )
    return JSONResponse(
        {"version": outcome.version.model_dump(mode="json", exclude={"code"})}, status_code=201
    )


@router.post("/{source_id}/versions/{version_id}/test")
async def test_version(
    source_id: str,
    version_id: str,
    session: SessionDep,
    registry: RegistryDep,
    body: VersionTestRequest | None = None,
) -> JSONResponse:
    """Execute a version and return its test results."""
    results = await _version_service(session, registry).test_version(
        source_id, version_id, fixture=body.fixture if body else None
    )
    return JSONResponse({"test_results": results.model_dump(mode="json")})


@router.put("/{source_id}/versions/{version_id}/activate")
async def activate_version(
    source_id: str, version_id: str, session: SessionDep, registry: RegistryDep
) -> JSONResponse:
    """Make a version the source's active version."""
    version = await _version_service(session, registry).activate_version(source_id, version_id)
    return JSONResponse({"version": version.model_dump(mode="json", exclude={"code"})})


@router.get("/{source_id}/versions/{version_id}/code")
async def get_version_code(
    source_id: str, version_id: str, session: SessionDep, registry: RegistryDep
) -> JSONResponse:
    """Code payload of a version."""
    version = _version_service(session, registry).get_version(source_id, version_id)
    return JSONResponse(
        {"version_number": version.version_number, "code": version.code}
    )


@router.post("/{source_id}/rollback/{version_id}")
async def rollback_version(
    source_id: str, version_id: str, session: SessionDep, registry: RegistryDep
) -> JSONResponse:
    """Re-activate a prior version's code as a new ROLLBACK version."""
    version = await _version_service(session, registry).rollback_to_version(
        source_id, version_id
    )
    return JSONResponse(
        {"version": version.model_dump(mode="json", exclude={"code"})}, status_code=201
    )


@router.post("/{source_id}/run")
async def run_source(
    source_id: str,
    session: SessionDep,
    registry: RegistryDep,
    background: bool = False,
) -> JSONResponse:
    """
    Run ingestion for a source.

    With ``background=true`` the run is queued on the worker and the job id
    is returned; otherwise the run completes within the request.
    """
    if background:
        job_id = await enqueue_ingestion(source_id)
        return JSONResponse({"job_id": job_id}, status_code=202)

    coordinator = IngestionCoordinator(
        session,
        global_config=registry.global_config,
        merge_config=registry.merge,
    )
    result = await coordinator.run_ingestion(source_id)
    return JSONResponse({"result": result.to_dict()})
