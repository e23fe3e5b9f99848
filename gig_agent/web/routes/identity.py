"""Artist identity matching routes."""

from typing import Literal

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from gig_agent.core.enums import MatchNamespace
from gig_agent.core.errors import ValidationError
from gig_agent.services.identity.resolver import IdentityResolver
from gig_agent.web.dependencies import RegistryDep, SessionDep

router = APIRouter(prefix="/api/identity", tags=["identity"])


class ArtistActionRequest(BaseModel):
    """Manual matching action on one artist."""

    action: Literal["manual", "no_match", "reset"]
    external_id: str | None = None


@router.post("/{namespace}/match")
async def match_artists(
    namespace: MatchNamespace,
    session: SessionDep,
    registry: RegistryDep,
    limit: int | None = Query(default=None, ge=1, le=500),
) -> JSONResponse:
    """Match a batch of PENDING artists in a namespace."""
    resolver = IdentityResolver(session, matching=registry.matching)
    result = await resolver.match_pending_artists(namespace, limit=limit)
    return JSONResponse(result.to_dict())


@router.get("/{namespace}/stats")
async def matching_stats(
    namespace: MatchNamespace, session: SessionDep, registry: RegistryDep
) -> JSONResponse:
    """Artist counts by match status."""
    stats = IdentityResolver(session, matching=registry.matching).get_matching_stats(namespace)
    return JSONResponse(stats.model_dump(mode="json"))


@router.patch("/{namespace}/artists/{artist_id}")
async def update_artist_match(
    namespace: MatchNamespace,
    artist_id: str,
    body: ArtistActionRequest,
    session: SessionDep,
    registry: RegistryDep,
) -> JSONResponse:
    """Link, reject or reset an artist's match by hand."""
    resolver = IdentityResolver(session, matching=registry.matching)
    if body.action == "manual":
        if not body.external_id:
            raise ValidationError("external_id is required for a manual match")
        artist = await resolver.manually_match_artist(namespace, artist_id, body.external_id)
    elif body.action == "no_match":
        artist = resolver.mark_artist_no_match(namespace, artist_id)
    else:
        artist = resolver.reset_artist_match(namespace, artist_id)
    return JSONResponse({"artist": artist.model_dump(mode="json")})
