"""Typer CLI root application with serve command."""

import typer

from locallens.core.config import get_settings
from locallens.core.logging import setup_logging

app = typer.Typer(name="locallens", help="LocalLens geocoding service CLI")


@app.callback()
def _main_callback(ctx: typer.Context) -> None:
    """Initialize logging for all CLI commands."""
    settings = get_settings()
    component = "worker" if ctx.invoked_subcommand == "worker" else "cli"
    setup_logging(settings.log_level, log_dir=settings.log_dir, json_logs=settings.log_json, component=component)


@app.command()
def serve(
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload for development"),
    host: str = typer.Option("0.0.0.0", "--host", help="Bind host"),  # noqa: S104
    port: int = typer.Option(8000, "--port", help="Bind port"),
) -> None:
    """Start the API server."""
    import uvicorn

    uvicorn.run(
        "locallens.main:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


def _register_subcommands() -> None:
    """Register all CLI subcommand groups."""
    from locallens.cli.cache_cmd import cache_app
    from locallens.cli.geocode_cmd import geocode_app
    from locallens.cli.worker_cmd import worker

    app.add_typer(geocode_app, name="geocode", help="Geocoding lookup commands")
    app.add_typer(cache_app, name="cache", help="Cache invalidation commands")
    app.command("worker")(worker)


_register_subcommands()
