"""Main CLI application module."""

import typer

from .admin_commands import (
    accounts_app,
    db_app,
    identities_app,
    maintenance_app,
    tenants_app,
)
from .utils import console

# Create the main CLI application
app = typer.Typer(
    help="🔐 Tenant sign-in administration",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# Register command groups
app.add_typer(db_app, name="db")
app.add_typer(tenants_app, name="tenants")
app.add_typer(accounts_app, name="accounts")
app.add_typer(identities_app, name="identities")
app.add_typer(maintenance_app, name="maintenance")


@app.command(name="serve")
def serve(
    host: str | None = typer.Option(None, help="Host to bind (defaults to app.host)"),
    port: int | None = typer.Option(None, help="Port to bind (defaults to app.port)"),
    reload: bool = typer.Option(False, help="Enable auto-reload on code changes"),
) -> None:
    """Start the sign-in API server."""
    import uvicorn

    from src.signin.runtime.context import get_config

    config = get_config()
    console.print(f"[bold green]Starting sign-in server ({config.app.environment})[/bold green]")
    uvicorn.run(
        "src.signin.api.http.app:app",
        host=host or config.app.host,
        port=port or config.app.port,
        reload=reload,
        access_log=False,
    )


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
