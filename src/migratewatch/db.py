"""Database utilities built around a SQLAlchemy engine."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, Mapping, Sequence

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Connection, Engine

logger = logging.getLogger(__name__)

_POSTGRES_PREFIXES = ("postgres://", "postgresql://")


def normalize_dsn(dsn: str) -> str:
    """Map bare paths to SQLite URLs and plain PostgreSQL URLs to psycopg."""

    if "://" not in dsn:
        return f"sqlite:///{dsn}"
    for prefix in _POSTGRES_PREFIXES:
        if dsn.startswith(prefix):
            return "postgresql+psycopg://" + dsn[len(prefix):]
    return dsn


class Database:
    """Lightweight wrapper exposing the few SQL features migrations rely on."""

    def __init__(self, dsn: str, search_path: Sequence[str] | None = None) -> None:
        self.dsn = normalize_dsn(dsn)
        self.engine: Engine = create_engine(self.dsn, future=True)
        self.dialect = self.engine.dialect.name
        self.is_postgres = self.dialect.startswith("postgres")
        self.search_path = list(search_path or [])
        if self.is_postgres and self.search_path:
            event.listen(self.engine, "connect", self._apply_search_path, insert=True)
        if self.dialect == "sqlite":
            # pysqlite commits DDL implicitly; take over BEGIN so DDL is transactional.
            event.listen(self.engine, "connect", self._disable_pysqlite_transactions)
            event.listen(self.engine, "begin", self._emit_begin)

    # ------------------------------------------------------------------
    @staticmethod
    def _disable_pysqlite_transactions(dbapi_connection, connection_record) -> None:
        dbapi_connection.isolation_level = None

    @staticmethod
    def _emit_begin(conn: Connection) -> None:
        conn.exec_driver_sql("BEGIN")

    def _apply_search_path(self, dbapi_connection, connection_record) -> None:  # pragma: no cover - postgres only
        previous = dbapi_connection.autocommit
        dbapi_connection.autocommit = True
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("SET SESSION search_path TO " + ", ".join(self.search_path))
        finally:
            cursor.close()
            dbapi_connection.autocommit = previous

    # Context manager ------------------------------------------------------
    @contextmanager
    def connect(self) -> Iterator[Connection]:
        """Yield a connection inside a transaction committed on success."""

        with self.engine.begin() as conn:
            yield conn

    # Execution helpers ----------------------------------------------------
    @staticmethod
    def execute_raw(conn: Connection, statement: str) -> None:
        """Execute SQL verbatim, without bind-parameter parsing."""

        conn.exec_driver_sql(statement, execution_options={"no_parameters": True})

    def execute(self, sql: str, params: Mapping[str, Any] | None = None) -> None:
        with self.connect() as conn:
            conn.execute(text(sql), dict(params or {}))

    def fetch_all(self, sql: str, params: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        with self.engine.connect() as conn:
            rows = conn.execute(text(sql), dict(params or {})).mappings().all()
        return [dict(row) for row in rows]

    def fetch_scalar(self, sql: str, params: Mapping[str, Any] | None = None) -> Any:
        with self.engine.connect() as conn:
            return conn.execute(text(sql), dict(params or {})).scalar()

    def close(self) -> None:
        self.engine.dispose()


__all__ = ["Database", "normalize_dsn"]
