"""Forward-only migration runner with a persistent ledger."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from sqlalchemy import DateTime, String, bindparam, text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from .db import Database
from .models import MigrationFile, MigrationPhase, MigrationRecord, MigrationRunResult
from .monitor import ConnectionMonitor
from .sql import split_statements

logger = logging.getLogger(__name__)

MIGRATION_SUFFIX = ".sql"
RUN_CONTEXT = "migration-run"
DUPLICATE_OBJECT_SQLSTATE = "42710"

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")
_DUPLICATE_ROLE = re.compile(r'\brole "[^"]+" already exists')


class MigrationOutcome(Enum):
    APPLIED = "applied"
    SKIPPED = "skipped"
    TOLERATED = "tolerated"


def list_ordered_migrations(source_dir: Path | str) -> list[MigrationFile]:
    """Return the ``.sql`` files of ``source_dir`` sorted by filename."""

    directory = Path(source_dir)
    if not directory.is_dir():
        raise FileNotFoundError(f"Migration directory not found: {directory}")
    files = [
        path
        for path in directory.iterdir()
        if path.is_file() and path.suffix == MIGRATION_SUFFIX
    ]
    return [MigrationFile(name=path.name, path=path) for path in sorted(files, key=lambda p: p.name)]


def is_duplicate_role_error(exc: BaseException) -> bool:
    """Whether ``exc`` reports a role that already exists.

    PostgreSQL reports duplicate constraints, policies and roles under the same
    SQLSTATE, so the message must also name a role. Drivers without a SQLSTATE
    are classified by the message alone.
    """

    original = exc.orig if isinstance(exc, DBAPIError) and exc.orig is not None else exc
    message = str(original).lower()
    code = getattr(original, "sqlstate", None) or getattr(original, "pgcode", None)
    if code:
        return code == DUPLICATE_OBJECT_SQLSTATE and bool(_DUPLICATE_ROLE.search(message))
    return bool(_DUPLICATE_ROLE.search(message))


class MigrationLedger:
    """Append-only record of applied migrations."""

    def __init__(self, database: Database, table: str = "migrations") -> None:
        if not _IDENTIFIER.match(table):
            raise ValueError(f"Invalid ledger table name: {table!r}")
        self.database = database
        self.table = table

    def initialize(self) -> None:
        with self.database.connect() as conn:
            conn.execute(
                text(
                    f"""
                    CREATE TABLE IF NOT EXISTS {self.table} (
                        migration_name TEXT PRIMARY KEY,
                        applied_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
                    )
                    """
                )
            )

    def applied_names(self) -> set[str]:
        rows = self.database.fetch_all(f"SELECT migration_name FROM {self.table}")
        return {row["migration_name"] for row in rows}

    def contains(self, name: str) -> bool:
        count = self.database.fetch_scalar(
            f"SELECT COUNT(*) FROM {self.table} WHERE migration_name = :name",
            {"name": name},
        )
        return bool(count)

    def records(self) -> list[MigrationRecord]:
        query = text(
            f"SELECT migration_name, applied_at FROM {self.table} ORDER BY migration_name"
        ).columns(migration_name=String(), applied_at=DateTime())
        with self.database.engine.connect() as conn:
            rows = conn.execute(query).all()
        return [MigrationRecord(name=name, applied_at=applied_at) for name, applied_at in rows]

    def record(self, name: str, conn: Connection) -> None:
        """Insert ``name`` using the caller's transaction."""

        statement = text(
            f"INSERT INTO {self.table} (migration_name, applied_at) VALUES (:name, :applied_at)"
        ).bindparams(bindparam("applied_at", type_=DateTime()))
        conn.execute(
            statement,
            {"name": name, "applied_at": datetime.now(timezone.utc).replace(tzinfo=None)},
        )


class Migrator:
    """Apply migrations strictly in order, one at a time, recording each."""

    def __init__(
        self,
        database: Database,
        ledger: MigrationLedger | None = None,
        monitor: ConnectionMonitor | None = None,
    ) -> None:
        self.database = database
        self.ledger = ledger or MigrationLedger(database)
        self.monitor = monitor

    # ------------------------------------------------------------------
    def _snapshot(self, phase: MigrationPhase) -> None:
        if self.monitor is not None:
            self.monitor.try_snapshot(phase, RUN_CONTEXT, self.database)

    def _execute(self, name: str, sql: str) -> None:
        statements = split_statements(sql)
        with self.database.connect() as conn:
            for index, statement in enumerate(statements, start=1):
                try:
                    Database.execute_raw(conn, statement)
                except SQLAlchemyError:
                    logger.error("Failed to execute statement %d in migration %s", index, name)
                    logger.debug("Statement: %s", statement)
                    raise
            self.ledger.record(name, conn)

    def apply_migration(self, name: str, sql: str) -> MigrationOutcome:
        if self.ledger.contains(name):
            logger.debug("Skipping already applied migration: %s", name)
            return MigrationOutcome.SKIPPED

        def operation() -> None:
            self._execute(name, sql)

        try:
            if self.monitor is not None:
                self.monitor.monitor_migration_operation(name, self.database, operation)
            else:
                operation()
        except SQLAlchemyError as exc:
            if not is_duplicate_role_error(exc):
                logger.error("Migration %s failed: %s", name, getattr(exc, "orig", None) or exc)
                raise
            logger.warning("Role already exists, continuing migration: %s", name)
            with self.database.connect() as conn:
                self.ledger.record(name, conn)
            return MigrationOutcome.TOLERATED

        logger.info("Applied migration: %s", name)
        return MigrationOutcome.APPLIED

    def pending(self, source_dir: Path | str) -> list[MigrationFile]:
        files = list_ordered_migrations(source_dir)
        self.ledger.initialize()
        applied = self.ledger.applied_names()
        return [migration for migration in files if migration.name not in applied]

    def apply_all(self, source_dir: Path | str) -> MigrationRunResult:
        """Apply every pending migration in ``source_dir``; stop at the first failure."""

        files = list_ordered_migrations(source_dir)
        logger.info("Found %d migration files in %s", len(files), source_dir)

        result = MigrationRunResult()
        self._snapshot(MigrationPhase.PRE_SETUP)
        try:
            self.ledger.initialize()
            self._snapshot(MigrationPhase.SETUP)
            for migration in files:
                outcome = self.apply_migration(migration.name, migration.sql)
                if outcome is MigrationOutcome.SKIPPED:
                    result.skipped.append(migration.name)
                    continue
                result.applied.append(migration.name)
                if outcome is MigrationOutcome.TOLERATED:
                    result.tolerated.append(migration.name)
        finally:
            self._snapshot(MigrationPhase.CLEANUP)

        logger.info(
            "Migration run complete: %d applied, %d already applied",
            result.newly_applied,
            len(result.skipped),
        )
        return result


__all__ = [
    "MIGRATION_SUFFIX",
    "MigrationLedger",
    "MigrationOutcome",
    "Migrator",
    "is_duplicate_role_error",
    "list_ordered_migrations",
]
