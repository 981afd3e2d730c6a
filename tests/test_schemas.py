from __future__ import annotations

from pathlib import Path

import pytest

from migratewatch.errors import SchemaDriftError
from migratewatch.migrations import list_ordered_migrations
from migratewatch.schemas import (
    CANONICAL_REGISTRY,
    SchemaRegistry,
    canonical_search_path,
    extract_schemas,
    extract_schemas_from_migrations,
)

REPO_MIGRATIONS = Path(__file__).resolve().parents[1] / "migrations"


def test_extract_schemas_handles_optional_clauses():
    sql = """
    CREATE SCHEMA auth;
    create schema if not exists "directory";
    CREATE SCHEMA IF NOT EXISTS mail AUTHORIZATION postgres;
    -- CREATE SCHEMA commented_out;
    CREATE TABLE auth.users (id INTEGER);
    """
    assert extract_schemas(sql) == {"auth", "directory", "mail"}


def test_canonical_search_path_order():
    assert canonical_search_path() == [
        "auth",
        "directory",
        "mail",
        "accounting",
        "equity",
        "estates",
        "standards",
        "legal",
        "matters",
        "documents",
        "service",
        "admin",
        "ethereal",
        "marketing",
        "public",
    ]
    assert CANONICAL_REGISTRY.search_path_sql().startswith("SET search_path TO auth, directory")


def test_repository_migrations_match_canonical_schemas():
    files = list_ordered_migrations(REPO_MIGRATIONS)
    declared = extract_schemas_from_migrations(files)
    assert declared | {"public"} == set(canonical_search_path())
    CANONICAL_REGISTRY.verify(files)


def test_verify_reports_drift(tmp_path):
    (tmp_path / "20250101000000_one.sql").write_text("CREATE SCHEMA IF NOT EXISTS auth;\n")
    (tmp_path / "20250101000001_two.sql").write_text("CREATE SCHEMA IF NOT EXISTS billing;\n")
    registry = SchemaRegistry.of(["auth", "directory"])

    with pytest.raises(SchemaDriftError) as excinfo:
        registry.verify(list_ordered_migrations(tmp_path))

    assert excinfo.value.missing == {"directory"}
    assert excinfo.value.unexpected == {"billing"}


def test_registry_rejects_duplicates():
    with pytest.raises(ValueError):
        SchemaRegistry.of(["auth", "auth"])
    with pytest.raises(ValueError):
        SchemaRegistry.of(["auth", "public"])
