"""Command line interface for migratewatch."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table
from sqlalchemy.exc import SQLAlchemyError

from .config import get_settings
from .db import Database
from .errors import MigrationExecutionError, SchemaDriftError
from .migrations import Migrator, list_ordered_migrations
from .monitor import ConnectionMonitor, check_connection_health
from .schemas import CANONICAL_REGISTRY, extract_schemas_from_migrations

app = typer.Typer(help="Ordered, idempotent SQL migrations with connection-pool diagnostics.")
console = Console()


def _configure_logging() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _load_database() -> Database:
    settings = get_settings()
    return Database(settings.database_url, search_path=CANONICAL_REGISTRY.search_path())


def _source_dir(source: Optional[Path]) -> Path:
    return source or get_settings().migrations_dir


@app.callback()
def main() -> None:
    _configure_logging()


def _describe_failure(migrator: Migrator, pending: list[str], exc: SQLAlchemyError) -> str:
    cause = getattr(exc, "orig", None) or exc
    if not pending:
        return str(cause)
    done = migrator.ledger.applied_names()
    failed = next((name for name in pending if name not in done), "<unknown>")
    return str(MigrationExecutionError(failed, cause))


@app.command()
def migrate(
    source: Optional[Path] = typer.Option(None, "--dir", help="Directory holding migration files."),
    monitor: Optional[bool] = typer.Option(
        None, "--monitor/--no-monitor", help="Capture connection snapshots around each migration."
    ),
) -> None:
    """Apply pending migrations in filename order."""

    settings = get_settings()
    enabled = settings.monitoring if monitor is None else monitor
    connection_monitor = ConnectionMonitor(settings.max_snapshots) if enabled else None

    database = _load_database()
    migrator = Migrator(database, monitor=connection_monitor)
    pending: list[str] = []
    try:
        pending = [migration.name for migration in migrator.pending(_source_dir(source))]
        result = migrator.apply_all(_source_dir(source))
    except FileNotFoundError as exc:
        console.print(f"[bold red]MIGRATION_FAILED[/bold red]: {escape(str(exc))}", soft_wrap=True)
        raise typer.Exit(code=1) from exc
    except SQLAlchemyError as exc:
        message = _describe_failure(migrator, pending, exc)
        console.print(f"[bold red]MIGRATION_FAILED[/bold red]: {escape(message)}", soft_wrap=True)
        raise typer.Exit(code=1) from exc
    finally:
        if connection_monitor is not None:
            console.print(connection_monitor.generate_report().analysis_report, markup=False)
        database.close()

    console.print(
        f"[bold green]Applied[/bold green] {result.newly_applied} migration(s)"
        f" [dim]({len(result.skipped)} already applied)[/dim]"
    )
    for name in result.tolerated:
        console.print(f"[yellow]Tolerated existing role in[/yellow] {name}")


@app.command()
def status(
    source: Optional[Path] = typer.Option(None, "--dir", help="Directory holding migration files."),
) -> None:
    """Show applied and pending migrations."""

    database = _load_database()
    migrator = Migrator(database)
    pending = {migration.name for migration in migrator.pending(_source_dir(source))}
    applied = {record.name: record.applied_at for record in migrator.ledger.records()}
    database.close()

    table = Table(title="Migrations")
    table.add_column("Migration")
    table.add_column("Applied at")
    for migration in list_ordered_migrations(_source_dir(source)):
        if migration.name in pending:
            table.add_row(migration.name, "[yellow]pending[/yellow]")
        else:
            table.add_row(migration.name, str(applied.get(migration.name, "")))
    console.print(table)


@app.command()
def schemas(
    source: Optional[Path] = typer.Option(None, "--dir", help="Directory holding migration files."),
    verify: bool = typer.Option(False, "--verify", help="Fail when migrations and the canonical list differ."),
) -> None:
    """Print the canonical search path and the schemas migrations create."""

    files = list_ordered_migrations(_source_dir(source))
    console.print(f"search_path: {', '.join(CANONICAL_REGISTRY.search_path())}")
    declared = extract_schemas_from_migrations(files)
    console.print(f"declared by migrations: {', '.join(sorted(declared)) or '(none)'}")
    if verify:
        try:
            CANONICAL_REGISTRY.verify(files)
        except SchemaDriftError as exc:
            console.print(f"[bold red]SCHEMA_DRIFT[/bold red]: {escape(str(exc))}", soft_wrap=True)
            raise typer.Exit(code=1) from exc
        console.print("[bold green]Canonical schema list matches migrations[/bold green]")


@app.command()
def health() -> None:
    """Check connectivity and summarize open connections."""

    database = _load_database()
    try:
        console.print(check_connection_health(database), markup=False)
    except SQLAlchemyError as exc:
        console.print(f"[bold red]HEALTH_CHECK_FAILED[/bold red]: {escape(str(exc))}", soft_wrap=True)
        raise typer.Exit(code=1) from exc
    finally:
        database.close()


if __name__ == "__main__":  # pragma: no cover
    app()
