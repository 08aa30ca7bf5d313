"""Versioned schema migrations applied once each, in registration order."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from shared.db.connection import LOCALIZED_NOCASE, localized_nocase_compare

if TYPE_CHECKING:
    from collections.abc import Callable

    from shared.db.connection import Database

logger = structlog.get_logger()

MIGRATIONS_TABLE = "schema_migrations"

_CREATE_MIGRATIONS_TABLE = f"CREATE TABLE IF NOT EXISTS {MIGRATIONS_TABLE} (identifier TEXT PRIMARY KEY)"


@dataclass(frozen=True)
class Migration:
    identifier: str
    migrate: Callable[[sqlite3.Connection], None]


def _schema_of(conn: sqlite3.Connection) -> list[tuple[str, str, str]]:
    rows = conn.execute(
        "SELECT type, name, sql FROM sqlite_master "
        "WHERE name NOT LIKE 'sqlite_%' AND name != ? AND sql IS NOT NULL "
        "ORDER BY type, name",
        (MIGRATIONS_TABLE,),
    ).fetchall()
    return [(row[0], row[1], row[2]) for row in rows]


class DatabaseMigrator:
    """Apply registered migrations to a Database.

    Each migration runs in its own write transaction together with the row
    that records it, so a failed migration leaves no trace.

    With erase_database_on_schema_change, a database whose schema differs
    from what its applied migrations would produce today is wiped and
    migrated from scratch. Meant for development, when migrations are still
    being edited.
    """

    def __init__(self, *, erase_database_on_schema_change: bool = False) -> None:
        self._migrations: list[Migration] = []
        self.erase_database_on_schema_change = erase_database_on_schema_change

    @property
    def identifiers(self) -> list[str]:
        return [m.identifier for m in self._migrations]

    def register_migration(self, identifier: str, migrate: Callable[[sqlite3.Connection], None]) -> None:
        """Register a migration. Identifiers must be unique."""
        if identifier in self.identifiers:
            raise ValueError(f"Migration '{identifier}' is already registered")
        self._migrations.append(Migration(identifier, migrate))

    def applied_migrations(self, database: Database) -> list[str]:
        """Return identifiers of the migrations already applied, in application order."""
        return database.read(self._read_applied)

    def has_completed_migrations(self, database: Database) -> bool:
        return set(self.identifiers) <= set(self.applied_migrations(database))

    def migrate(self, database: Database) -> list[str]:
        """Apply every migration not applied yet. Return their identifiers."""
        database.write(lambda conn: conn.execute(_CREATE_MIGRATIONS_TABLE))

        if self.erase_database_on_schema_change and self._schema_changed(database):
            logger.warning("schema changed since last migration, erasing database", path=database.path)
            database.write(_drop_all_tables)

        applied = set(self.applied_migrations(database))
        newly_applied: list[str] = []
        for migration in self._migrations:
            if migration.identifier in applied:
                continue
            database.write(lambda conn, m=migration: self._apply(conn, m))
            newly_applied.append(migration.identifier)
            logger.info("applied migration", identifier=migration.identifier, path=database.path)
        return newly_applied

    @staticmethod
    def _apply(conn: sqlite3.Connection, migration: Migration) -> None:
        migration.migrate(conn)
        conn.execute(f"INSERT INTO {MIGRATIONS_TABLE} (identifier) VALUES (?)", (migration.identifier,))

    @staticmethod
    def _read_applied(conn: sqlite3.Connection) -> list[str]:
        exists = conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
            (MIGRATIONS_TABLE,),
        ).fetchone()
        if exists is None:
            return []
        rows = conn.execute(f"SELECT identifier FROM {MIGRATIONS_TABLE} ORDER BY rowid").fetchall()
        return [row[0] for row in rows]

    def _schema_changed(self, database: Database) -> bool:
        """Compare the on-disk schema with a scratch database migrated to the same point."""
        applied = self.applied_migrations(database)
        known = self.identifiers
        if applied != known[: len(applied)]:
            return True

        scratch = sqlite3.connect(":memory:")
        scratch.create_collation(LOCALIZED_NOCASE, localized_nocase_compare)
        try:
            for migration in self._migrations[: len(applied)]:
                migration.migrate(scratch)
            expected = _schema_of(scratch)
        finally:
            scratch.close()
        return database.read(_schema_of) != expected


def _drop_all_tables(conn: sqlite3.Connection) -> None:
    conn.execute("PRAGMA defer_foreign_keys=ON")
    for kind, name, _ in _schema_of(conn):
        if kind in ("table", "view"):
            conn.execute(f'DROP {kind.upper()} IF EXISTS "{name}"')
    conn.execute(f"DELETE FROM {MIGRATIONS_TABLE}")
