"""Player table schema and database setup."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from players.queries import PLAYER_TABLE
from players.settings import PlayersSettings
from shared.db.connection import Database
from shared.db.migrations import DatabaseMigrator

if TYPE_CHECKING:
    import sqlite3

logger = structlog.get_logger()


def _create_player_table(conn: sqlite3.Connection) -> None:
    conn.execute(
        f"CREATE TABLE {PLAYER_TABLE} ("
        "id INTEGER PRIMARY KEY AUTOINCREMENT, "
        "name TEXT NOT NULL, "
        "score INTEGER NOT NULL"
        ")",
    )


def make_migrator(settings: PlayersSettings) -> DatabaseMigrator:
    """Return the migrator holding every player schema migration."""
    migrator = DatabaseMigrator(erase_database_on_schema_change=settings.erase_on_schema_change)
    migrator.register_migration("v1", _create_player_table)
    return migrator


def open_database(settings: PlayersSettings | None = None) -> Database:
    """Connect to the configured database and bring its schema up to date."""
    settings = settings or PlayersSettings()
    db = Database(
        settings.database_path,
        busy_timeout_ms=settings.busy_timeout_ms,
        max_idle_readers=settings.max_idle_readers,
    )
    db.connect()
    try:
        applied = make_migrator(settings).migrate(db)
    except Exception:
        db.close()
        raise
    logger.info("players database ready", path=settings.database_path, applied_migrations=applied)
    return db
