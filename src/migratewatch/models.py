"""Domain models shared by the migration applier and the connection monitor."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import total_ordering
from pathlib import Path
from types import MappingProxyType
from typing import Mapping


@total_ordering
class MigrationPhase(Enum):
    """Lifecycle points at which a connection snapshot may be captured.

    Members compare by declaration order. ``CLEANUP`` is both the normal
    terminal phase and the phase recorded when a monitored operation fails.
    """

    PRE_SETUP = "pre-setup"
    SETUP = "setup"
    PRE_MIGRATION = "pre-migration"
    MIGRATION = "migration"
    POST_MIGRATION = "post-migration"
    CLEANUP = "cleanup"

    @property
    def order(self) -> int:
        return list(type(self)).index(self)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, MigrationPhase):
            return NotImplemented
        return self.order < other.order


@dataclass(frozen=True, slots=True)
class MigrationRecord:
    """A row of the migration ledger."""

    name: str
    applied_at: datetime


@dataclass(frozen=True, slots=True)
class MigrationFile:
    """A migration script discovered on disk."""

    name: str
    path: Path

    @property
    def sql(self) -> str:
        return self.path.read_text(encoding="utf-8")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class ConnectionUsageSnapshot:
    """Point-in-time composition of the connections open against a database."""

    phase: MigrationPhase
    total_connections: int
    active_connections: int
    idle_connections: int
    connections_by_state: Mapping[str, int]
    connections_by_application: Mapping[str, int]
    migration_context: str
    captured_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        if self.total_connections < 0:
            raise ValueError("total_connections must be non-negative")
        object.__setattr__(
            self, "connections_by_state", MappingProxyType(dict(self.connections_by_state))
        )
        object.__setattr__(
            self,
            "connections_by_application",
            MappingProxyType(dict(self.connections_by_application)),
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "phase": self.phase.value,
            "total_connections": self.total_connections,
            "active_connections": self.active_connections,
            "idle_connections": self.idle_connections,
            "connections_by_state": dict(self.connections_by_state),
            "connections_by_application": dict(self.connections_by_application),
            "migration_context": self.migration_context,
            "captured_at": self.captured_at.isoformat(),
        }


@dataclass(slots=True)
class MigrationRunResult:
    """Summary of a migration run.

    ``applied`` lists every newly recorded migration in execution order;
    ``tolerated`` is the subset recorded despite a duplicate-role error.
    """

    applied: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    tolerated: list[str] = field(default_factory=list)

    @property
    def newly_applied(self) -> int:
        return len(self.applied)


__all__ = [
    "ConnectionUsageSnapshot",
    "MigrationFile",
    "MigrationPhase",
    "MigrationRecord",
    "MigrationRunResult",
]
