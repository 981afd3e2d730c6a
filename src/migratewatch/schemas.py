"""Canonical schema ordering and drift detection against migration sources."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Sequence

from .errors import SchemaDriftError
from .models import MigrationFile

logger = logging.getLogger(__name__)

GENERAL_SCHEMA = "public"

# Business schemas in name-resolution priority order.
BUSINESS_SCHEMAS: tuple[str, ...] = (
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
)

_CREATE_SCHEMA = re.compile(
    r"\bCREATE\s+SCHEMA\s+(?:IF\s+NOT\s+EXISTS\s+)?(?P<name>\"[^\"]+\"|'[^']+'|[^\s;]+)",
    re.IGNORECASE,
)


def _clean_name(raw: str) -> str:
    return raw.strip().strip(";").strip("\"'")


def extract_schemas(source_text: str) -> set[str]:
    """Return the schema names declared by ``CREATE SCHEMA`` lines in SQL text."""

    schemas: set[str] = set()
    for line in source_text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("--"):
            continue
        for match in _CREATE_SCHEMA.finditer(stripped):
            name = _clean_name(match.group("name"))
            if name and name.upper() != "AUTHORIZATION":
                schemas.add(name)
    return schemas


def extract_schemas_from_migrations(files: Iterable[MigrationFile]) -> set[str]:
    schemas: set[str] = set()
    for migration in files:
        schemas |= extract_schemas(migration.sql)
    return schemas


@dataclass(frozen=True)
class SchemaRegistry:
    """Fixed, ordered schema list used as the session search path."""

    business_schemas: tuple[str, ...] = BUSINESS_SCHEMAS
    general_schema: str = GENERAL_SCHEMA

    def __post_init__(self) -> None:
        names = list(self.business_schemas)
        if len(set(names)) != len(names):
            raise ValueError("Business schemas must be unique")
        if self.general_schema in names:
            raise ValueError("The general schema must not appear among business schemas")

    @classmethod
    def of(cls, business_schemas: Sequence[str], general_schema: str = GENERAL_SCHEMA) -> "SchemaRegistry":
        return cls(tuple(business_schemas), general_schema)

    def search_path(self) -> list[str]:
        return [*self.business_schemas, self.general_schema]

    def search_path_sql(self) -> str:
        return "SET search_path TO " + ", ".join(self.search_path())

    def schema_set(self) -> frozenset[str]:
        return frozenset(self.search_path())

    def verify(self, files: Iterable[MigrationFile]) -> set[str]:
        """Compare declared schemas with the canonical list.

        The general schema always exists, so it counts as declared. Raises
        :class:`SchemaDriftError` on any difference and returns the extracted
        schema set otherwise.
        """

        declared = extract_schemas_from_migrations(files)
        expected = set(self.business_schemas)
        found = declared - {self.general_schema}
        missing = expected - found
        unexpected = found - expected
        if missing or unexpected:
            logger.error(
                "Canonical schema list is stale: missing=%s unexpected=%s",
                sorted(missing),
                sorted(unexpected),
            )
            raise SchemaDriftError(missing, unexpected)
        return declared


CANONICAL_REGISTRY = SchemaRegistry()


def canonical_search_path() -> list[str]:
    """Return the canonical ordered search path (business schemas, then public)."""

    return CANONICAL_REGISTRY.search_path()


__all__ = [
    "BUSINESS_SCHEMAS",
    "CANONICAL_REGISTRY",
    "GENERAL_SCHEMA",
    "SchemaRegistry",
    "canonical_search_path",
    "extract_schemas",
    "extract_schemas_from_migrations",
]
