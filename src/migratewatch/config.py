"""Runtime configuration helpers for migratewatch."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

_TRUTHY = {"1", "true", "yes", "on"}


def _load_env_file() -> None:
    env_path = Path(".env")
    if not env_path.exists():
        return
    for line in env_path.read_text().splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())


_load_env_file()


@dataclass(frozen=True)
class Settings:
    """Typed wrapper around environment-driven configuration."""

    database_url: str
    migrations_dir: Path
    max_snapshots: int
    monitoring: bool
    log_level: str


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached configuration values loaded from the environment."""

    database_url = (
        os.getenv("MIGRATEWATCH_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or "sqlite:///migratewatch.db"
    )
    migrations_dir = Path(os.getenv("MIGRATEWATCH_MIGRATIONS_DIR", "migrations"))
    max_snapshots = int(os.getenv("MIGRATEWATCH_MAX_SNAPSHOTS", "200"))
    monitoring = os.getenv("MIGRATEWATCH_MONITORING", "false").strip().lower() in _TRUTHY
    log_level = os.getenv("MIGRATEWATCH_LOG_LEVEL", "INFO").upper()

    return Settings(
        database_url=database_url,
        migrations_dir=migrations_dir,
        max_snapshots=max_snapshots,
        monitoring=monitoring,
        log_level=log_level,
    )
