"""Connection-pool snapshots captured around migration work."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import deque
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from .db import Database
from .errors import ConnectionDiagnosticsError
from .models import ConnectionUsageSnapshot, MigrationPhase
from .report import ConnectionAnalysisReport, build_report, format_snapshot

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_SNAPSHOTS = 200

POSTGRES_ACTIVITY_QUERY = """
SELECT
    state,
    application_name,
    COUNT(*) AS count
FROM pg_stat_activity
WHERE datname = current_database()
GROUP BY state, application_name
ORDER BY count DESC
"""


class ConnectionMonitor:
    """Bounded, thread-safe store of connection usage snapshots.

    Every read and write goes through one lock. A snapshot's timestamp is
    taken while that lock is held, so insertion order and ``captured_at``
    order always agree. Readers take the same lock, so reads also exclude
    each other; a read copies at most ``max_snapshots`` references. When
    the buffer is full the oldest snapshot is dropped.

    ``activity_query`` must return ``state``, ``application_name`` and
    ``count`` columns; the default targets PostgreSQL's ``pg_stat_activity``.
    """

    def __init__(
        self,
        max_snapshots: int = DEFAULT_MAX_SNAPSHOTS,
        activity_query: str = POSTGRES_ACTIVITY_QUERY,
    ) -> None:
        if max_snapshots < 1:
            raise ValueError("max_snapshots must be at least 1")
        self.max_snapshots = max_snapshots
        self.activity_query = activity_query
        self._snapshots: deque[ConnectionUsageSnapshot] = deque(maxlen=max_snapshots)
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    def take_snapshot(
        self, phase: MigrationPhase, context: str, database: Database
    ) -> ConnectionUsageSnapshot:
        try:
            rows = database.fetch_all(self.activity_query)
        except SQLAlchemyError as exc:
            logger.error("Failed to take migration connection snapshot: %s", exc)
            raise ConnectionDiagnosticsError(
                f"Connection introspection failed for {context}: {exc}"
            ) from exc

        by_state: dict[str, int] = {}
        by_application: dict[str, int] = {}
        total = active = idle = 0
        for row in rows:
            count = int(row.get("count") or 0)
            state = row.get("state") or "null"
            application = row.get("application_name") or ""
            by_state[state] = by_state.get(state, 0) + count
            by_application[application] = by_application.get(application, 0) + count
            total += count
            if state == "active":
                active += count
            elif state == "idle":
                idle += count

        with self._lock:
            snapshot = ConnectionUsageSnapshot(
                phase=phase,
                total_connections=total,
                active_connections=active,
                idle_connections=idle,
                connections_by_state=by_state,
                connections_by_application=by_application,
                migration_context=context,
            )
            self._snapshots.append(snapshot)
        logger.info("Migration connection snapshot:\n%s", format_snapshot(snapshot))
        return snapshot

    def get_snapshots(
        self, context: str | None = None, phase: MigrationPhase | None = None
    ) -> list[ConnectionUsageSnapshot]:
        with self._lock:
            snapshots = list(self._snapshots)
        if context is not None:
            snapshots = [s for s in snapshots if s.migration_context == context]
        if phase is not None:
            snapshots = [s for s in snapshots if s.phase is phase]
        return snapshots

    def clear_snapshots(self) -> None:
        with self._lock:
            self._snapshots.clear()
        logger.info("Cleared all migration connection snapshots")

    def generate_report(self, context: str | None = None) -> ConnectionAnalysisReport:
        return build_report(self.get_snapshots(context=context))

    # ------------------------------------------------------------------
    def try_snapshot(self, phase: MigrationPhase, context: str, database: Database) -> None:
        try:
            self.take_snapshot(phase, context, database)
        except ConnectionDiagnosticsError as exc:
            logger.warning("Skipping %s snapshot for %s: %s", phase.value, context, exc)

    def monitor_migration_operation(
        self, context: str, database: Database, operation: Callable[[], T]
    ) -> T:
        """Run ``operation`` with snapshots before, after and on failure.

        A failing operation still gets a ``cleanup`` snapshot under the same
        context; the original exception is then re-raised untouched.
        """

        self.try_snapshot(MigrationPhase.PRE_MIGRATION, context, database)
        try:
            result = operation()
        except BaseException:
            self.try_snapshot(MigrationPhase.CLEANUP, context, database)
            raise
        self.try_snapshot(MigrationPhase.MIGRATION, context, database)
        self.try_snapshot(MigrationPhase.POST_MIGRATION, context, database)
        return result

    async def amonitor_migration_operation(
        self, context: str, database: Database, operation: Callable[[], Awaitable[T]]
    ) -> T:
        await asyncio.to_thread(self.try_snapshot, MigrationPhase.PRE_MIGRATION, context, database)
        try:
            result = await operation()
        except BaseException:
            await asyncio.to_thread(self.try_snapshot, MigrationPhase.CLEANUP, context, database)
            raise
        await asyncio.to_thread(self.try_snapshot, MigrationPhase.MIGRATION, context, database)
        await asyncio.to_thread(self.try_snapshot, MigrationPhase.POST_MIGRATION, context, database)
        return result


def check_connection_health(database: Database) -> str:
    """Return a short text summary of the database and its open connections."""

    lines = ["=== Migration Connection Health Check ==="]
    lines.append(f"Dialect: {database.dialect}")
    if database.is_postgres:
        info = database.fetch_all("SELECT current_database() AS name, version() AS version")
        if info:
            lines.append(f"Database: {info[0]['name']}")
            lines.append(f"Version: {str(info[0]['version'])[:50]}")
        states = database.fetch_all(
            "SELECT state, COUNT(*) AS count FROM pg_stat_activity "
            "WHERE datname = current_database() GROUP BY state ORDER BY count DESC"
        )
        lines.append("Connection States:")
        for row in states:
            lines.append(f"  {row['state'] or 'null'}: {row['count']} connections")
    database.fetch_scalar("SELECT 1")
    lines.append("Basic connectivity test: PASSED")
    lines.append("=== Health Check Complete ===")
    return "\n".join(lines)


__all__ = [
    "ConnectionMonitor",
    "DEFAULT_MAX_SNAPSHOTS",
    "POSTGRES_ACTIVITY_QUERY",
    "check_connection_health",
]
