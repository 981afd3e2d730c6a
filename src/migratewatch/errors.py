"""Exception types raised by migratewatch."""

from __future__ import annotations

from typing import AbstractSet


class MigrateWatchError(RuntimeError):
    """Base class for errors raised by migratewatch itself."""


class ConnectionDiagnosticsError(MigrateWatchError):
    """The connection introspection query could not be executed."""


class MigrationExecutionError(MigrateWatchError):
    """A migration failed; carries the migration name for reporting."""

    def __init__(self, name: str, cause: BaseException) -> None:
        super().__init__(f"Migration {name} failed: {cause}")
        self.name = name
        self.cause = cause


class SchemaDriftError(MigrateWatchError):
    """The canonical schema list no longer matches the migration sources."""

    def __init__(self, missing: AbstractSet[str], unexpected: AbstractSet[str]) -> None:
        parts = []
        if missing:
            parts.append("not created by any migration: " + ", ".join(sorted(missing)))
        if unexpected:
            parts.append("missing from canonical list: " + ", ".join(sorted(unexpected)))
        super().__init__("Schema drift detected (" + "; ".join(parts) + ")")
        self.missing = frozenset(missing)
        self.unexpected = frozenset(unexpected)


__all__ = [
    "ConnectionDiagnosticsError",
    "MigrateWatchError",
    "MigrationExecutionError",
    "SchemaDriftError",
]
