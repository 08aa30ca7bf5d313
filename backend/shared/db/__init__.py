"""SQLite database layer: connections, snapshots, and schema migrations."""

from shared.db.connection import LOCALIZED_NOCASE, Database, Snapshot, StoreError
from shared.db.migrations import DatabaseMigrator

__all__ = [
    "LOCALIZED_NOCASE",
    "Database",
    "DatabaseMigrator",
    "Snapshot",
    "StoreError",
]
