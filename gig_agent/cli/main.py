"""Gig Agent CLI using Typer."""

import logging
import os
from pathlib import Path

import typer
from dotenv import load_dotenv

from gig_agent.cli.catalog import artists_app, catalog_app, playlists_app
from gig_agent.cli.ingest import ingest_app

# Load .env file from current directory or project root
_env_paths = [
    Path.cwd() / ".env",
    Path(__file__).parent.parent.parent / ".env",
]
for _env_path in _env_paths:
    if _env_path.exists():
        load_dotenv(_env_path)
        break

app = typer.Typer(
    name="gig-agent",
    help="Gig Agent - Live music event ingestion, artist matching and playlist sync",
    add_completion=False,
)
app.add_typer(ingest_app, name="ingest")
app.add_typer(artists_app, name="artists")
app.add_typer(playlists_app, name="playlists")
app.add_typer(catalog_app, name="catalog")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _check_ai_config() -> None:
    """Check and display AI configuration status."""
    anthropic_key = os.environ.get("ANTHROPIC_API_KEY", "")
    openai_key = os.environ.get("OPENAI_API_KEY", "")
    provider = os.environ.get("AI_PROVIDER", "anthropic")

    if provider == "anthropic" and anthropic_key:
        typer.echo("  AI Provider: Anthropic (configured)")
    elif provider == "openai" and openai_key:
        typer.echo("  AI Provider: OpenAI (configured)")
    else:
        typer.echo(f"  AI Provider: {provider} (no API key, scraper generation unavailable)")


def _check_catalog_config() -> None:
    """Check and display external catalog configuration status."""
    user_agent = os.environ.get("MUSICBRAINZ_USER_AGENT")
    typer.echo(f"  MusicBrainz User-Agent: {user_agent or 'default'}")

    if os.environ.get("SPOTIFY_CLIENT_ID") and os.environ.get("SPOTIFY_CLIENT_SECRET"):
        typer.echo("  Spotify: client credentials configured")
    else:
        typer.echo("  Spotify: Not configured (matching and playlist sync unavailable)")
    if not os.environ.get("SPOTIFY_ACCESS_TOKEN"):
        typer.echo("  Tip: Set SPOTIFY_ACCESS_TOKEN to enable playlist writes")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", "-h", help="Host to bind to"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to bind to"),
    reload: bool = typer.Option(
        False, "--reload", "-r", help="Enable auto-reload for development"
    ),
) -> None:
    """Start the Gig Agent API server."""
    import uvicorn

    typer.echo(f"Starting Gig Agent API on http://{host}:{port}")
    _check_ai_config()
    typer.echo("Press Ctrl+C to stop the server")
    typer.echo("")

    uvicorn.run(
        "gig_agent.web.app:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
    )


@app.command()
def init_db() -> None:
    """Initialize the database (create tables)."""
    from gig_agent.db.engine import init_db as db_init

    typer.echo("Initializing database...")
    db_init()
    typer.echo("Database initialized successfully!")


@app.command()
def version() -> None:
    """Show the Gig Agent version."""
    typer.echo("Gig Agent v0.1.0")


@app.command()
def check_config() -> None:
    """Check the current configuration status."""
    typer.echo("Gig Agent Configuration")
    typer.echo("=" * 40)

    # Check .env file
    env_found = False
    for _env_path in _env_paths:
        if _env_path.exists():
            typer.echo(f"  .env file: {_env_path}")
            env_found = True
            break
    if not env_found:
        typer.echo("  .env file: Not found")

    _check_ai_config()
    _check_catalog_config()

    from gig_agent.db.engine import get_database_url
    from gig_agent.ingestion.registry import get_default_registry

    typer.echo(f"  Database: {get_database_url()}")

    registry = get_default_registry()
    if registry.config_path is None:
        typer.echo("  Sources config: Not found")
    else:
        typer.echo(f"  Sources config: {registry.config_path}")
        typer.echo(
            f"  Sources: {len(registry.list_sources())} configured, "
            f"{len(registry.list_enabled_sources())} enabled"
        )

    redis_host = os.environ.get("REDIS_HOST", "localhost")
    redis_port = os.environ.get("REDIS_PORT", "6379")
    typer.echo(f"  Redis: {redis_host}:{redis_port}")


if __name__ == "__main__":
    app()
