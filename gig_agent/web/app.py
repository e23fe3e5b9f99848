"""FastAPI application factory for Gig Agent."""

import logging
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from gig_agent.core.errors import (
    ConflictError,
    ExternalServiceError,
    GigAgentError,
    NotFoundError,
    ValidationError,
)
from gig_agent.db.engine import init_db

logger = logging.getLogger(__name__)

# Load .env file from project root
_project_root = Path(__file__).parent.parent.parent
_env_file = _project_root / ".env"
if _env_file.exists():
    load_dotenv(_env_file)


def status_for_error(error: GigAgentError) -> int:
    """HTTP status code of a pipeline error."""
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, ConflictError):
        return 409
    if isinstance(error, ExternalServiceError):
        return 502
    return 500


async def _handle_gig_agent_error(request: Request, exc: GigAgentError) -> JSONResponse:
    status_code = status_for_error(exc)
    if status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(exc.to_dict(), status_code=status_code)


def create_app(initialize_db: bool = True) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        initialize_db: Create missing tables on the configured database.
    """
    app = FastAPI(
        title="Gig Agent",
        description="Event ingestion, artist matching and playlist sync for live music",
        version="0.1.0",
    )

    if initialize_db:
        init_db()

    app.add_exception_handler(GigAgentError, _handle_gig_agent_error)

    # Include routers (import here to avoid circular imports)
    from gig_agent.web.routes import identity, playlists, versions

    app.include_router(versions.router)
    app.include_router(identity.router)
    app.include_router(playlists.router)

    @app.get("/api/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app
