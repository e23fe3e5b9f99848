"""
Catalog CLI Commands
====================

CLI commands for artist identity matching, playlist sync and catalog
maintenance.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from gig_agent.cli.ingest import enqueue_and_report, fail
from gig_agent.core.enums import MatchNamespace
from gig_agent.core.errors import GigAgentError, NotFoundError
from gig_agent.core.schema import Playlist
from gig_agent.db.engine import get_session
from gig_agent.db.repositories import EventRepository, PlaylistRepository, RegionRepository
from gig_agent.ingestion.jobs import enqueue_matching, enqueue_playlist_sync
from gig_agent.ingestion.registry import get_default_registry
from gig_agent.services.identity.resolver import IdentityResolver
from gig_agent.services.playlist_service import PlaylistSyncService

console = Console()
artists_app = typer.Typer(help="Artist identity matching commands")
playlists_app = typer.Typer(help="Playlist sync commands")
catalog_app = typer.Typer(help="Catalog maintenance commands")

NAMESPACE_OPTION = typer.Option(
    MatchNamespace.MUSICBRAINZ, "--namespace", "-n", help="Identity namespace"
)


def _resolver(session) -> IdentityResolver:
    return IdentityResolver(session, matching=get_default_registry().matching)


# Artists subcommands


@artists_app.command("match")
def match_artists(
    namespace: MatchNamespace = NAMESPACE_OPTION,
    limit: Optional[int] = typer.Option(None, "--limit", "-l", help="Batch size"),
    background: bool = typer.Option(False, "--background", "-b", help="Queue on the worker"),
) -> None:
    """
    Match a batch of pending artists against an external catalog.

    Examples:
        gig-agent artists match --namespace musicbrainz --limit 20
        gig-agent artists match -n spotify --background
    """
    if background:
        enqueue_and_report(lambda: enqueue_matching(namespace.value, limit))
        return

    with get_session() as session:
        try:
            with console.status(f"[bold blue]Matching in {namespace.value}...[/bold blue]"):
                result = asyncio.run(_resolver(session).match_pending_artists(namespace, limit))
        except GigAgentError as e:
            fail(e)

    if not result.outcomes:
        rprint(f"[yellow]No pending artists in {namespace.value}[/yellow]")
        return

    table = Table(title=f"{namespace.value} matching")
    table.add_column("Artist", style="bold")
    table.add_column("Outcome")
    table.add_column("Confidence")
    table.add_column("Matched As")
    table.add_column("External ID")
    colors = {"matched": "green", "no_match": "yellow", "error": "red", "skipped": "dim"}
    for outcome in result.outcomes:
        color = colors.get(outcome.outcome.value, "white")
        table.add_row(
            outcome.name,
            f"[{color}]{outcome.outcome.value}[/{color}]",
            f"{outcome.confidence:.2f}" if outcome.confidence is not None else "-",
            outcome.external_name or "",
            outcome.external_id or outcome.error or "",
        )
    console.print(table)
    rprint(
        f"\nMatched {result.matched}, no match {result.no_match}, errors {result.errors}, "
        f"skipped {result.skipped}"
    )


@artists_app.command("stats")
def matching_stats(
    namespace: MatchNamespace = NAMESPACE_OPTION,
) -> None:
    """
    Show artist counts by match status.

    Examples:
        gig-agent artists stats --namespace spotify
    """
    with get_session() as session:
        stats = _resolver(session).get_matching_stats(namespace)

    rprint(f"\n[bold]{namespace.value} matching[/bold]")
    rprint(f"  Total: {stats.total}")
    rprint(f"  Pending: {stats.pending}")
    rprint(f"  Matched: [green]{stats.matched}[/green]")
    rprint(f"  No match: [yellow]{stats.no_match}[/yellow]")


@artists_app.command("link")
def link_artist(
    artist_id: str = typer.Argument(..., help="Local artist id"),
    external_id: str = typer.Argument(..., help="Catalog id to link"),
    namespace: MatchNamespace = NAMESPACE_OPTION,
) -> None:
    """
    Manually link an artist to a catalog record.

    Examples:
        gig-agent artists link 5f0c... 85af... --namespace musicbrainz
    """
    with get_session() as session:
        try:
            artist = asyncio.run(
                _resolver(session).manually_match_artist(namespace, artist_id, external_id)
            )
        except GigAgentError as e:
            fail(e)

    rprint(
        f"[green]Linked '{artist.name}' to {namespace.value} "
        f"{artist.external_id_for(namespace)}[/green]"
    )


@artists_app.command("no-match")
def mark_no_match(
    artist_id: str = typer.Argument(..., help="Local artist id"),
    namespace: MatchNamespace = NAMESPACE_OPTION,
) -> None:
    """
    Mark an artist as absent from a catalog.

    Examples:
        gig-agent artists no-match 5f0c... --namespace spotify
    """
    with get_session() as session:
        try:
            artist = _resolver(session).mark_artist_no_match(namespace, artist_id)
        except GigAgentError as e:
            fail(e)

    rprint(f"[yellow]Marked '{artist.name}' as no {namespace.value} match[/yellow]")


@artists_app.command("reset")
def reset_match(
    artist_id: str = typer.Argument(..., help="Local artist id"),
    namespace: MatchNamespace = NAMESPACE_OPTION,
) -> None:
    """
    Return an artist to pending so the next batch retries it.

    Examples:
        gig-agent artists reset 5f0c... --namespace musicbrainz
    """
    with get_session() as session:
        try:
            artist = _resolver(session).reset_artist_match(namespace, artist_id)
        except GigAgentError as e:
            fail(e)

    rprint(f"[green]Reset {namespace.value} match of '{artist.name}'[/green]")


# Playlists subcommands


@playlists_app.command("create")
def create_playlist(
    name: str = typer.Argument(..., help="Playlist name"),
    spotify_playlist_id: str = typer.Argument(..., help="Spotify playlist id"),
    region: Optional[str] = typer.Option(None, "--region", "-r", help="Region slug"),
    days_ahead: int = typer.Option(30, "--days-ahead", "-d", help="Look-ahead window in days"),
) -> None:
    """
    Register a managed playlist.

    Examples:
        gig-agent playlists create "NYC This Month" 37i9dQZF1DX... --region nyc
    """
    with get_session() as session:
        try:
            region_id = None
            if region:
                region_record = RegionRepository(session).get_by_slug(region)
                if region_record is None:
                    raise NotFoundError("Region", region)
                region_id = region_record.id
            playlist = PlaylistRepository(session).create(
                Playlist(
                    name=name,
                    spotify_playlist_id=spotify_playlist_id,
                    region_id=region_id,
                    days_ahead=days_ahead,
                )
            )
            session.commit()
        except GigAgentError as e:
            fail(e)

    rprint(f"[green]Created playlist '{playlist.name}'[/green]")
    rprint(f"  ID: {playlist.id}")


@playlists_app.command("sync")
def sync_playlists(
    playlist_id: Optional[str] = typer.Argument(None, help="Playlist id (all when omitted)"),
    background: bool = typer.Option(
        False, "--background", "-b", help="Queue a sync of all playlists on the worker"
    ),
) -> None:
    """
    Sync managed playlists with upcoming shows.

    Examples:
        gig-agent playlists sync
        gig-agent playlists sync 0b6c...
        gig-agent playlists sync --background
    """
    if background:
        enqueue_and_report(enqueue_playlist_sync)
        return

    with get_session() as session:
        service = PlaylistSyncService(session, config=get_default_registry().playlists)
        try:
            with console.status("[bold blue]Syncing playlists...[/bold blue]"):
                if playlist_id:
                    results = [asyncio.run(service.sync_playlist(playlist_id))]
                else:
                    results = asyncio.run(service.sync_all_playlists())
        except GigAgentError as e:
            fail(e)

    if not results:
        rprint("[yellow]No enabled playlists[/yellow]")
        return

    table = Table(title="Playlist Sync")
    table.add_column("Playlist", style="bold")
    table.add_column("Status")
    table.add_column("Added")
    table.add_column("Removed")
    table.add_column("Total")
    table.add_column("Error")
    for result in results:
        status = "[green]ok[/green]" if result.success else "[red]failed[/red]"
        table.add_row(
            result.name,
            status,
            str(result.added),
            str(result.removed),
            str(result.total),
            result.error or "",
        )
    console.print(table)

    for result in results:
        for warning in result.warnings:
            rprint(f"[yellow]Warning:[/yellow] {result.name}: {warning}")

    if any(not r.success for r in results):
        raise typer.Exit(1)


# Catalog subcommands


@catalog_app.command("backfill-regions")
def backfill_regions(
    dry_run: bool = typer.Option(False, "--dry-run", help="Only report mismatches"),
) -> None:
    """
    Reset event regions to their venue's region.

    Examples:
        gig-agent catalog backfill-regions --dry-run
    """
    with get_session() as session:
        events = EventRepository(session)
        if dry_run:
            drift = events.find_region_drift()
            rprint(f"{len(drift)} events have a region different from their venue")
            return
        fixed = events.backfill_region_ids()
        session.commit()

    rprint(f"[green]Corrected region of {fixed} events[/green]")
