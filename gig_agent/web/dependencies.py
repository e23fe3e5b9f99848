"""FastAPI dependencies shared by the API routes."""

from collections.abc import Generator
from typing import Annotated

from fastapi import Depends
from sqlalchemy.orm import Session

from gig_agent.db.engine import get_session_factory
from gig_agent.ingestion.registry import SourceRegistry, get_default_registry


def get_db() -> Generator[Session, None, None]:
    """Yield a database session for one request.

    Tests override this dependency to point at a temporary database.
    """
    session = get_session_factory()()
    try:
        yield session
    finally:
        session.close()


def get_registry() -> SourceRegistry:
    """Dependency returning the process-wide source registry."""
    return get_default_registry()


# Type aliases for dependency injection
SessionDep = Annotated[Session, Depends(get_db)]
RegistryDep = Annotated[SourceRegistry, Depends(get_registry)]
