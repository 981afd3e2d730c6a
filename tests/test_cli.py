from __future__ import annotations

from typer.testing import CliRunner

from migratewatch.cli import app
from migratewatch.config import get_settings
from migratewatch.db import Database, normalize_dsn

runner = CliRunner()


def _configure(monkeypatch, tmp_path):
    db_path = tmp_path / "cli.sqlite"
    monkeypatch.setenv("MIGRATEWATCH_DATABASE_URL", f"sqlite:///{db_path}")
    monkeypatch.setenv("MIGRATEWATCH_MONITORING", "false")
    get_settings.cache_clear()
    source = tmp_path / "migrations"
    source.mkdir()
    return db_path, source


def test_migrate_then_rerun(tmp_path, monkeypatch):
    db_path, source = _configure(monkeypatch, tmp_path)
    (source / "20250101000000_a.sql").write_text("CREATE TABLE a (id INTEGER);\n")
    (source / "20250102000000_b.sql").write_text("CREATE TABLE b (id INTEGER);\n")

    first = runner.invoke(app, ["migrate", "--dir", str(source)])
    assert first.exit_code == 0, first.output
    assert "Applied 2 migration(s)" in first.output

    second = runner.invoke(app, ["migrate", "--dir", str(source)])
    assert second.exit_code == 0, second.output
    assert "Applied 0 migration(s)" in second.output

    status = runner.invoke(app, ["status", "--dir", str(source)])
    assert status.exit_code == 0, status.output
    assert "pending" not in status.output

    database = Database(str(db_path))
    assert database.fetch_scalar("SELECT COUNT(*) FROM migrations") == 2
    database.close()
    get_settings.cache_clear()


def test_migrate_reports_failing_file(tmp_path, monkeypatch):
    _, source = _configure(monkeypatch, tmp_path)
    (source / "20250101000000_ok.sql").write_text("CREATE TABLE ok (id INTEGER);\n")
    (source / "20250102000000_bad.sql").write_text("CREATE TABLE bad (;\n")

    result = runner.invoke(app, ["migrate", "--dir", str(source)])

    assert result.exit_code == 1
    assert "MIGRATION_FAILED" in result.output
    assert "20250102000000_bad.sql" in result.output
    assert "syntax error" in result.output
    get_settings.cache_clear()


def test_migrate_reports_missing_directory(tmp_path, monkeypatch):
    _configure(monkeypatch, tmp_path)

    result = runner.invoke(app, ["migrate", "--dir", str(tmp_path / "absent")])

    assert result.exit_code == 1
    assert "MIGRATION_FAILED" in result.output
    assert "Migration directory not found" in result.output
    assert not isinstance(result.exception, FileNotFoundError)
    get_settings.cache_clear()


def test_migrate_reports_unreachable_database(tmp_path, monkeypatch):
    _, source = _configure(monkeypatch, tmp_path)
    monkeypatch.setenv("MIGRATEWATCH_DATABASE_URL", f"sqlite:///{tmp_path / 'missing' / 'db.sqlite'}")
    get_settings.cache_clear()
    (source / "20250101000000_a.sql").write_text("CREATE TABLE a (id INTEGER);\n")

    result = runner.invoke(app, ["migrate", "--dir", str(source)])

    assert result.exit_code == 1
    assert "MIGRATION_FAILED" in result.output
    assert "unable to open database file" in result.output
    get_settings.cache_clear()


def test_schemas_verify_detects_drift(tmp_path, monkeypatch):
    _, source = _configure(monkeypatch, tmp_path)
    (source / "20250101000000_auth.sql").write_text("CREATE SCHEMA IF NOT EXISTS auth;\n")

    result = runner.invoke(app, ["schemas", "--dir", str(source), "--verify"])

    assert result.exit_code == 1
    assert "SCHEMA_DRIFT" in result.output
    get_settings.cache_clear()


def test_normalize_dsn():
    assert normalize_dsn("postgres://u@h/db") == "postgresql+psycopg://u@h/db"
    assert normalize_dsn("postgresql://u@h/db") == "postgresql+psycopg://u@h/db"
    assert normalize_dsn("kb.sqlite") == "sqlite:///kb.sqlite"
    assert normalize_dsn("sqlite:///x.db") == "sqlite:///x.db"
