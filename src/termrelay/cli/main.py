"""
Top-level CLI commands: serve, init-db, token.
"""

from datetime import timedelta
from typing import Optional

import typer

from termrelay.config import Settings

app = typer.Typer(help="termrelay: WebSocket relay for interactive coding CLI sessions")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Bind address (default: HOST or 0.0.0.0)"),
    port: Optional[int] = typer.Option(None, help="Port (default: PORT or 9622)"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
):
    """Start the relay server."""
    from termrelay.server import run

    settings = Settings.from_env()
    overrides = {}
    if host:
        overrides["host"] = host
    if port:
        overrides["port"] = port
    if debug:
        overrides["log_level"] = "DEBUG"
    if overrides:
        settings = settings.model_copy(update=overrides)

    run(settings)


@app.command("init-db")
def init_db():
    """Create the database tables if they do not exist."""
    from termrelay.database import SessionDatabase
    from termrelay.logger import setup_logging

    settings = Settings.from_env()
    setup_logging(level=settings.log_level)

    db = SessionDatabase(settings.database_url)
    db.dispose()
    typer.echo(f"✅ Database ready at {settings.database_url}")


@app.command()
def token(
    user_id: str = typer.Argument(help="Owner id to put in the token subject"),
    hours: float = typer.Option(1.0, help="Token lifetime in hours"),
):
    """Issue a development JWT signed with JWT_SECRET."""
    from termrelay.auth import AuthError, generate_token

    settings = Settings.from_env()
    try:
        typer.echo(generate_token(user_id, settings.jwt_secret, timedelta(hours=hours)))
    except AuthError as e:
        typer.echo(f"❌ {e}")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
