"""Playlist sync routes."""

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from gig_agent.services.playlist_service import PlaylistSyncService
from gig_agent.web.dependencies import RegistryDep, SessionDep

router = APIRouter(prefix="/api/playlists", tags=["playlists"])


@router.post("/sync")
async def sync_all_playlists(session: SessionDep, registry: RegistryDep) -> JSONResponse:
    """Sync every enabled playlist."""
    results = await PlaylistSyncService(session, config=registry.playlists).sync_all_playlists()
    return JSONResponse(
        {
            "synced": sum(1 for r in results if r.success),
            "failed": sum(1 for r in results if not r.success),
            "results": [r.to_dict() for r in results],
        }
    )


@router.post("/{playlist_id}/sync")
async def sync_playlist(playlist_id: str, session: SessionDep, registry: RegistryDep) -> JSONResponse:
    """Sync one playlist with upcoming shows."""
    result = await PlaylistSyncService(session, config=registry.playlists).sync_playlist(playlist_id)
    return JSONResponse(result.to_dict())
