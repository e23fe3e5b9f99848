"""
Ingestion CLI Commands
======================

CLI commands for running sources, managing their scraper versions and
inspecting background jobs.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table
from sqlalchemy.orm import Session

from gig_agent.core.enums import VersionOrigin
from gig_agent.core.errors import GigAgentError, NotFoundError
from gig_agent.core.schema import ScraperVersion, Source, VersionTestResults
from gig_agent.db.engine import get_session
from gig_agent.db.repositories import ScraperVersionRepository, SourceRepository
from gig_agent.ingestion.coordinator import IngestionCoordinator, IngestionResult
from gig_agent.ingestion.jobs import enqueue_ingest_all, enqueue_ingestion, get_job_status
from gig_agent.ingestion.registry import get_default_registry
from gig_agent.ingestion.scrapers import list_scrapers
from gig_agent.ingestion.versions import ScraperVersionService

console = Console()
ingest_app = typer.Typer(help="Ingestion pipeline commands")
sources_app = typer.Typer(help="Source management commands")
versions_app = typer.Typer(help="Scraper version commands")
jobs_app = typer.Typer(help="Job management commands")

ingest_app.add_typer(sources_app, name="sources")
ingest_app.add_typer(versions_app, name="versions")
ingest_app.add_typer(jobs_app, name="jobs")


def fail(error: GigAgentError) -> None:
    """Print a pipeline error and exit with status 1."""
    rprint(f"[red]Error:[/red] {error.message}")
    raise typer.Exit(1)


def resolve_source(session: Session, ref: str) -> Source:
    """Find a source by slug or id."""
    repo = SourceRepository(session)
    source = repo.get_by_slug(ref) or repo.get_by_id(ref)
    if source is None:
        raise NotFoundError("Source", ref)
    return source


def resolve_version(session: Session, source: Source, ref: str) -> ScraperVersion:
    """Find a version of a source by version number or id."""
    repo = ScraperVersionRepository(session)
    if ref.isdigit():
        for version in repo.list_by_source(source.id):
            if version.version_number == int(ref):
                return version
        raise NotFoundError("Scraper version", ref)
    return repo.get_for_source(source.id, ref)


def _coordinator(session: Session) -> IngestionCoordinator:
    registry = get_default_registry()
    return IngestionCoordinator(
        session, global_config=registry.global_config, merge_config=registry.merge
    )


def _version_service(session: Session) -> ScraperVersionService:
    return ScraperVersionService(session, global_config=get_default_registry().global_config)


# Run commands


@ingest_app.command("run")
def run_ingestion(
    source: str = typer.Option(..., "--source", "-s", help="Source slug or id to ingest"),
    sync: bool = typer.Option(False, "--sync", help="Run synchronously (blocking)"),
) -> None:
    """
    Run the ingestion pipeline for a source.

    Examples:
        gig-agent ingest run --source=blue-note --sync
        gig-agent ingest run -s blue-note
    """
    with get_session() as session:
        try:
            source_record = resolve_source(session, source)
        except GigAgentError as e:
            fail(e)

        rprint(f"\n[bold]Starting ingestion for source:[/bold] {source_record.slug}")
        rprint(f"  Type: {source_record.type.value}")
        rprint(f"  Priority: {source_record.priority}")

        if not sync:
            enqueue_and_report(lambda: enqueue_ingestion(str(source_record.id)))
            return

        rprint("\n[dim]Running synchronously...[/dim]\n")
        try:
            with console.status("[bold blue]Ingesting...[/bold blue]"):
                result = asyncio.run(_coordinator(session).run_ingestion(source_record.id))
        except GigAgentError as e:
            fail(e)

    _display_ingestion_result(result)
    if not result.success:
        raise typer.Exit(1)


@ingest_app.command("run-all")
def run_all(
    sync: bool = typer.Option(False, "--sync", help="Run synchronously (blocking)"),
) -> None:
    """
    Run ingestion for every active source.

    Examples:
        gig-agent ingest run-all --sync
    """
    if not sync:
        enqueue_and_report(enqueue_ingest_all)
        return

    with get_session() as session:
        with console.status("[bold blue]Ingesting all sources...[/bold blue]"):
            results = asyncio.run(_coordinator(session).run_all())

    table = Table(title="Ingestion Runs")
    table.add_column("Source", style="bold")
    table.add_column("Status")
    table.add_column("Events")
    table.add_column("Created")
    table.add_column("Updated")
    table.add_column("Error")
    for result in results:
        color = "green" if result.success else "red"
        table.add_row(
            result.source_slug,
            f"[{color}]{result.run_status.value}[/{color}]",
            str(len(result.events)),
            str(result.merge.created if result.merge else 0),
            str(result.merge.updated if result.merge else 0),
            result.error or "",
        )
    console.print(table)

    if any(not r.success for r in results):
        raise typer.Exit(1)


def enqueue_and_report(enqueue) -> None:
    rprint("\n[dim]Enqueueing job for async processing...[/dim]")
    try:
        job_id = asyncio.run(enqueue())
    except Exception as e:
        rprint(f"\n[red]Error:[/red] Failed to enqueue job: {e}")
        rprint("\nMake sure Redis is running:")
        rprint("  docker-compose up -d redis")
        raise typer.Exit(1)

    rprint("\n[green]Job enqueued successfully![/green]")
    rprint(f"Job ID: [bold]{job_id}[/bold]")
    rprint("\nCheck status with:")
    rprint(f"  gig-agent ingest jobs status {job_id}")


@ingest_app.command("worker")
def start_worker(
    burst: bool = typer.Option(False, "--burst", help="Run in burst mode (exit when queue empty)"),
) -> None:
    """
    Start the background worker.

    The worker processes queued ingestion, matching and playlist jobs from Redis.

    Examples:
        gig-agent ingest worker
        gig-agent ingest worker --burst
    """
    from arq import run_worker

    from gig_agent.ingestion.jobs import WorkerSettings

    rprint("[bold]Starting worker...[/bold]")
    rprint("Press Ctrl+C to stop\n")

    try:
        run_worker(WorkerSettings, burst=burst)
    except Exception as e:
        rprint(f"[red]Error:[/red] Worker failed: {e}")
        rprint("\nMake sure Redis is running:")
        rprint("  docker-compose up -d redis")
        raise typer.Exit(1)


def _display_ingestion_result(result: IngestionResult) -> None:
    """Display an ingestion result."""
    color = "green" if result.success else "red"
    rprint("\n[bold]Results:[/bold]")
    rprint(f"  Status: [{color}]{result.run_status.value}[/{color}]")
    rprint(f"  Source: {result.source_slug}")
    if result.version_number is not None:
        rprint(f"  Scraper version: {result.version_number}")
    if result.started_at and result.finished_at:
        rprint(f"  Duration: {(result.finished_at - result.started_at).total_seconds():.1f}s")

    rprint("\n[bold]Statistics:[/bold]")
    rprint(f"  Events scraped: {len(result.events)}")
    if result.merge:
        rprint(f"  Created: {result.merge.created}")
        rprint(f"  Updated: {result.merge.updated}")
        rprint(f"  Unchanged: {result.merge.unchanged}")
        rprint(f"  Dropped: {result.merge.dropped}")
        rprint(f"  Ambiguous: {result.merge.ambiguous}")
        rprint(f"  Cancelled: {result.merge.cancelled}")

        warnings = result.merge.warnings
        if warnings:
            rprint(f"\n[bold yellow]Warnings ({len(warnings)}):[/bold yellow]")
            for warning in warnings[:10]:
                rprint(f"  • {warning}")
            if len(warnings) > 10:
                rprint(f"  ... and {len(warnings) - 10} more")

    if result.error:
        rprint(f"\n[bold red]Error:[/bold red] {result.error}")


# Sources subcommands


@sources_app.command("list")
def list_sources(
    all_sources: bool = typer.Option(False, "--all", "-a", help="Show all sources including disabled"),
) -> None:
    """
    List ingestion sources stored in the database.

    Examples:
        gig-agent ingest sources list
        gig-agent ingest sources list --all
    """
    with get_session() as session:
        sources = SourceRepository(session).list_all(active_only=not all_sources)

    if not sources:
        rprint("[yellow]No sources found[/yellow]")
        rprint("\nAdd sources to config/sources.yaml and run:")
        rprint("  gig-agent ingest sources sync")
        return

    table = Table(title="Ingestion Sources")
    table.add_column("Slug", style="bold")
    table.add_column("Type")
    table.add_column("Priority")
    table.add_column("Trust")
    table.add_column("Status")
    table.add_column("Active Version")
    table.add_column("Last Run")

    for source in sources:
        status = "[green]enabled[/green]" if source.is_active else "[yellow]disabled[/yellow]"
        last_run = (
            f"{source.last_run_status.value} {source.last_run_at:%Y-%m-%d %H:%M}"
            if source.last_run_status and source.last_run_at
            else "never"
        )
        table.add_row(
            source.slug,
            source.type.value,
            str(source.priority),
            f"{source.trust_score:.2f}",
            status,
            str(source.active_version_number or "-"),
            last_run,
        )

    console.print(table)


@sources_app.command("show")
def show_source(
    ref: str = typer.Argument(..., help="Source slug or id"),
) -> None:
    """
    Show detailed information about a source.

    Examples:
        gig-agent ingest sources show blue-note
    """
    with get_session() as session:
        try:
            source = resolve_source(session, ref)
        except GigAgentError as e:
            fail(e)

    status = "[green]enabled[/green]" if source.is_active else "[yellow]disabled[/yellow]"

    rprint(f"\n[bold]Source: {source.name or source.slug}[/bold]")
    rprint(f"  ID: {source.id}")
    rprint(f"  Slug: {source.slug}")
    rprint(f"  Status: {status}")
    rprint(f"  Type: {source.type.value}")
    rprint(f"  Category: {source.category.value}")
    rprint(f"  Priority: {source.priority}")
    rprint(f"  Trust score: {source.trust_score:.2f}")
    if source.website:
        rprint(f"  Website: {source.website}")
    rprint(f"  Active version: {source.active_version_number or 'none'}")

    rprint("\n[bold]Last Run:[/bold]")
    if source.last_run_at:
        rprint(f"  At: {source.last_run_at.isoformat()}")
        rprint(f"  Status: {source.last_run_status.value if source.last_run_status else 'unknown'}")
        if source.last_run_error:
            rprint(f"  Error: {source.last_run_error}")
    else:
        rprint("  never")

    if source.config:
        rprint("\n[bold]Config:[/bold]")
        rprint(json.dumps(source.config, indent=2, default=str))

    scrapers = ", ".join(f"{t}={name}" for t, name in list_scrapers().items())
    rprint(f"\n[dim]Registered scrapers: {scrapers}[/dim]")


@sources_app.command("sync")
def sync_sources() -> None:
    """
    Upsert regions, venues and sources from config/sources.yaml.

    Examples:
        gig-agent ingest sources sync
    """
    registry = get_default_registry()
    if registry.config_path is None:
        rprint("[red]Error:[/red] No sources configuration found")
        raise typer.Exit(1)

    with get_session() as session:
        try:
            summary = registry.sync_to_db(session)
            session.commit()
        except GigAgentError as e:
            session.rollback()
            fail(e)

    rprint(f"[green]Synced configuration from {registry.config_path}[/green]")
    rprint(f"  Regions created: {summary.regions_created}")
    rprint(f"  Venues created: {summary.venues_created}")
    rprint(f"  Sources created: {summary.sources_created}")
    rprint(f"  Sources updated: {summary.sources_updated}")


def _set_active(ref: str, is_active: bool) -> Source:
    with get_session() as session:
        try:
            source = resolve_source(session, ref)
            updated = SourceRepository(session).set_active(source.id, is_active)
            session.commit()
        except GigAgentError as e:
            fail(e)
    return updated


@sources_app.command("enable")
def enable_source(
    ref: str = typer.Argument(..., help="Source slug or id"),
) -> None:
    """
    Enable a source.

    Examples:
        gig-agent ingest sources enable blue-note
    """
    source = _set_active(ref, True)
    rprint(f"[green]Source '{source.slug}' enabled[/green]")


@sources_app.command("disable")
def disable_source(
    ref: str = typer.Argument(..., help="Source slug or id"),
) -> None:
    """
    Disable a source. Its events and history are kept.

    Examples:
        gig-agent ingest sources disable blue-note
    """
    source = _set_active(ref, False)
    rprint(f"[yellow]Source '{source.slug}' disabled[/yellow]")


# Versions subcommands


@versions_app.command("list")
def list_versions(
    source: str = typer.Argument(..., help="Source slug or id"),
) -> None:
    """
    List scraper versions of a source, newest first.

    Examples:
        gig-agent ingest versions list blue-note
    """
    with get_session() as session:
        try:
            source_record = resolve_source(session, source)
            versions = ScraperVersionRepository(session).list_by_source(source_record.id)
        except GigAgentError as e:
            fail(e)

    if not versions:
        rprint(f"[yellow]No versions for '{source_record.slug}'[/yellow]")
        return

    table = Table(title=f"Scraper Versions: {source_record.slug}")
    table.add_column("#", style="bold")
    table.add_column("Active")
    table.add_column("Origin")
    table.add_column("Created")
    table.add_column("Tested")
    table.add_column("Events")
    table.add_column("Description")

    for version in versions:
        results = version.test_results
        tested = "-"
        if results is not None:
            tested = "[green]pass[/green]" if results.success else "[red]fail[/red]"
        table.add_row(
            str(version.version_number),
            "[green]✓[/green]" if version.is_active else "",
            version.origin.value,
            f"{version.created_at:%Y-%m-%d %H:%M}",
            tested,
            str(results.event_count) if results else "-",
            version.description or "",
        )

    console.print(table)


@versions_app.command("show")
def show_version(
    source: str = typer.Argument(..., help="Source slug or id"),
    version: str = typer.Argument(..., help="Version number or id"),
    code: bool = typer.Option(False, "--code", "-c", help="Print the scraper code"),
) -> None:
    """
    Show a scraper version and its last test results.

    Examples:
        gig-agent ingest versions show blue-note 3 --code
    """
    with get_session() as session:
        try:
            source_record = resolve_source(session, source)
            record = resolve_version(session, source_record, version)
        except GigAgentError as e:
            fail(e)

    rprint(f"\n[bold]{source_record.slug} version {record.version_number}[/bold]")
    rprint(f"  ID: {record.id}")
    rprint(f"  Active: {'yes' if record.is_active else 'no'}")
    rprint(f"  Origin: {record.origin.value}")
    rprint(f"  Created: {record.created_at.isoformat()}")
    if record.description:
        rprint(f"  Description: {record.description}")

    if record.test_results is not None:
        _display_test_results(record.test_results)

    if code:
        rprint("\n[bold]Code:[/bold]")
        console.print(record.code, markup=False, highlight=False)


@versions_app.command("create")
def create_version(
    source: str = typer.Argument(..., help="Source slug or id"),
    code_file: Path = typer.Argument(..., help="Python file defining scrape(config)"),
    description: Optional[str] = typer.Option(None, "--description", "-d", help="Change note"),
) -> None:
    """
    Store a scraper file as the source's next (inactive) version.

    Examples:
        gig-agent ingest versions create blue-note scrapers/blue_note.py -d "Fix doors time"
    """
    if not code_file.exists():
        rprint(f"[red]Error:[/red] File not found: {code_file}")
        raise typer.Exit(1)

    with get_session() as session:
        try:
            source_record = resolve_source(session, source)
            version = _version_service(session).create_version(
                source_record.id,
                code_file.read_text(),
                origin=VersionOrigin.MANUAL_EDIT,
                description=description,
            )
        except GigAgentError as e:
            fail(e)

    rprint(f"[green]Created version {version.version_number} of '{source_record.slug}'[/green]")
    rprint("\nTest it with:")
    rprint(f"  gig-agent ingest versions test {source_record.slug} {version.version_number}")


@versions_app.command("test")
def test_version(
    source: str = typer.Argument(..., help="Source slug or id"),
    version: str = typer.Argument(..., help="Version number or id"),
    fixture: Optional[Path] = typer.Option(
        None, "--fixture", "-f", help="JSON file of events to analyze instead of running"
    ),
) -> None:
    """
    Execute a scraper version and record its test results.

    Examples:
        gig-agent ingest versions test blue-note 3
    """
    fixture_events = json.loads(fixture.read_text()) if fixture else None

    with get_session() as session:
        try:
            source_record = resolve_source(session, source)
            record = resolve_version(session, source_record, version)
            with console.status("[bold blue]Testing...[/bold blue]"):
                results = asyncio.run(
                    _version_service(session).test_version(
                        source_record.id, record.id, fixture=fixture_events
                    )
                )
        except GigAgentError as e:
            fail(e)

    _display_test_results(results)
    if not results.success:
        raise typer.Exit(1)


@versions_app.command("activate")
def activate_version(
    source: str = typer.Argument(..., help="Source slug or id"),
    version: str = typer.Argument(..., help="Version number or id"),
) -> None:
    """
    Make a version the one production runs execute.

    Examples:
        gig-agent ingest versions activate blue-note 3
    """
    with get_session() as session:
        try:
            source_record = resolve_source(session, source)
            record = resolve_version(session, source_record, version)
            activated = asyncio.run(
                _version_service(session).activate_version(source_record.id, record.id)
            )
        except GigAgentError as e:
            fail(e)

    rprint(
        f"[green]Version {activated.version_number} of '{source_record.slug}' is now active[/green]"
    )


@versions_app.command("rollback")
def rollback_version(
    source: str = typer.Argument(..., help="Source slug or id"),
    version: str = typer.Argument(..., help="Version number or id to roll back to"),
) -> None:
    """
    Re-activate a prior version's code as a new version.

    Examples:
        gig-agent ingest versions rollback blue-note 2
    """
    with get_session() as session:
        try:
            source_record = resolve_source(session, source)
            record = resolve_version(session, source_record, version)
            created = asyncio.run(
                _version_service(session).rollback_to_version(source_record.id, record.id)
            )
        except GigAgentError as e:
            fail(e)

    rprint(
        f"[green]Rolled back '{source_record.slug}' to the code of version "
        f"{record.version_number} as version {created.version_number}[/green]"
    )


@versions_app.command("generate")
def generate_version(
    source: str = typer.Argument(..., help="Source slug or id"),
    previous: Optional[str] = typer.Option(
        None, "--previous", "-p", help="Version number or id to improve on"
    ),
    html_file: Optional[Path] = typer.Option(
        None, "--html", help="Saved listing page HTML (fetched from the website otherwise)"
    ),
    feedback: Optional[str] = typer.Option(None, "--feedback", help="Notes for the model"),
) -> None:
    """
    Generate a new scraper version with the configured AI provider.

    The version is stored inactive; test and activate it afterwards.

    Examples:
        gig-agent ingest versions generate blue-note
        gig-agent ingest versions generate blue-note --previous 3
    """
    from gig_agent.services.ai.generation import ScraperGenerator

    html_sample = html_file.read_text() if html_file else None

    with get_session() as session:
        try:
            source_record = resolve_source(session, source)
            previous_id = (
                resolve_version(session, source_record, previous).id if previous else None
            )
            generator = ScraperGenerator(
                session, global_config=get_default_registry().global_config
            )
            with console.status("[bold blue]Generating scraper...[/bold blue]"):
                outcome = asyncio.run(
                    generator.generate(
                        source_record.id,
                        html_sample=html_sample,
                        previous_version_id=previous_id,
                        feedback=feedback,
                    )
                )
        except GigAgentError as e:
            fail(e)

    if not outcome.success:
        rprint(f"[red]Generation failed:[/red] {outcome.error_message}")
        raise typer.Exit(1)

    rprint(
        f"[green]Generated version {outcome.version.version_number} "
        f"of '{source_record.slug}'[/green]"
    )
    rprint("\nTest it with:")
    rprint(f"  gig-agent ingest versions test {source_record.slug} {outcome.version.version_number}")


def _display_test_results(results: VersionTestResults) -> None:
    """Display scraper test results."""
    color = "green" if results.success else "red"
    rprint("\n[bold]Test Results:[/bold]")
    rprint(f"  Success: [{color}]{results.success}[/{color}]")
    rprint(f"  Events: {results.event_count}")
    rprint(f"  Execution time: {results.execution_time_ms} ms")
    if results.error:
        rprint(f"  Error: {results.error}")

    analysis = results.fields_analysis
    if analysis is not None and analysis.coverage:
        table = Table(title="Field Coverage")
        table.add_column("Field", style="bold")
        table.add_column("Required")
        table.add_column("Count")
        table.add_column("Coverage")
        for cov in analysis.coverage:
            pct_color = "green" if cov.percentage >= 100.0 else "yellow"
            table.add_row(
                cov.field,
                "yes" if cov.required else "",
                str(cov.count),
                f"[{pct_color}]{cov.percentage:.1f}%[/{pct_color}]",
            )
        console.print(table)
        rprint(f"  Completeness: {analysis.completeness:.1f}%")

    if results.warnings:
        rprint(f"\n[bold yellow]Warnings ({len(results.warnings)}):[/bold yellow]")
        for warning in results.warnings:
            rprint(f"  • {warning}")


# Jobs subcommands


@jobs_app.command("status")
def job_status(
    job_id: str = typer.Argument(..., help="Job ID to check"),
) -> None:
    """
    Check the status of a background job.

    Examples:
        gig-agent ingest jobs status abc123
    """
    try:
        result = asyncio.run(get_job_status(job_id))
    except Exception as e:
        rprint(f"[red]Error:[/red] Failed to get job status: {e}")
        rprint("\nMake sure Redis is running")
        raise typer.Exit(1)

    if result is None:
        rprint(f"[yellow]Job '{job_id}' not found[/yellow]")
        raise typer.Exit(1)

    rprint(f"\n[bold]Job: {job_id}[/bold]")
    rprint(f"  Status: {result.get('status', 'unknown')}")

    job_result = result.get("result")
    if isinstance(job_result, dict):
        _display_job_result(job_result)


def _display_job_result(result: dict) -> None:
    """Display a finished job's summary."""
    status = result.get("status", "unknown")
    status_color = {
        "completed": "green",
        "running": "blue",
        "pending": "yellow",
        "failed": "red",
    }.get(status, "white")

    rprint("\n[bold]Results:[/bold]")
    rprint(f"  Task: {result.get('task', 'N/A')}")
    rprint(f"  Status: [{status_color}]{status}[/{status_color}]")
    if result.get("duration_seconds"):
        rprint(f"  Duration: {result['duration_seconds']:.1f}s")

    details = result.get("details", [])
    if details:
        rprint(f"\n[bold]Details ({len(details)}):[/bold]")
        for detail in details[:10]:
            rprint(f"  • {json.dumps(detail, default=str)[:200]}")

    errors = result.get("errors", [])
    if errors:
        rprint(f"\n[bold red]Errors ({len(errors)}):[/bold red]")
        for error in errors[:10]:
            rprint(f"  • {error}")
        if len(errors) > 10:
            rprint(f"  ... and {len(errors) - 10} more")
