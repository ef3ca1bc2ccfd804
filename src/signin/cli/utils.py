"""Shared helpers for CLI commands."""

from collections.abc import Iterator
from contextlib import contextmanager

import typer
from rich.console import Console
from sqlmodel import Session

from src.signin.core.services.database.db_session import DbSessionService

console = Console()

_database_service: DbSessionService | None = None


def get_database_service() -> DbSessionService:
    """Return the process-wide database service, creating it on first use."""
    global _database_service
    if _database_service is None:
        _database_service = DbSessionService()
    return _database_service


@contextmanager
def database_session() -> Iterator[Session]:
    with get_database_service().session_scope() as db:
        yield db


def fail(message: str) -> typer.Exit:
    """Print an error and return the exit to raise."""
    console.print(f"[red]❌ {message}[/red]")
    return typer.Exit(code=1)
