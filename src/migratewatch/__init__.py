"""migratewatch package exports."""

from .config import get_settings
from .db import Database
from .errors import ConnectionDiagnosticsError, MigrationExecutionError, SchemaDriftError
from .migrations import MigrationLedger, MigrationOutcome, Migrator, list_ordered_migrations
from .models import ConnectionUsageSnapshot, MigrationPhase, MigrationRecord
from .monitor import ConnectionMonitor
from .report import ConnectionAnalysisReport, build_report
from .schemas import SchemaRegistry, canonical_search_path, extract_schemas

__all__ = [
    "ConnectionAnalysisReport",
    "ConnectionDiagnosticsError",
    "ConnectionMonitor",
    "ConnectionUsageSnapshot",
    "Database",
    "MigrationExecutionError",
    "MigrationLedger",
    "MigrationOutcome",
    "MigrationPhase",
    "MigrationRecord",
    "Migrator",
    "SchemaDriftError",
    "SchemaRegistry",
    "build_report",
    "canonical_search_path",
    "extract_schemas",
    "get_settings",
    "list_ordered_migrations",
]
