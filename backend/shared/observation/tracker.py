"""Dispatch committed write transactions to the observers of the tables they touched."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

import structlog

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = structlog.get_logger()


@dataclass(frozen=True)
class Commit:
    """Tables written by one committed transaction."""

    sequence: int  # strictly increasing per database
    tables: frozenset[str]


@dataclass(frozen=True)
class DatabaseRegion:
    """The set of tables an observer depends on.

    A full region matches every commit. Table names are compared
    case-insensitively, the way SQLite resolves them.
    """

    tables: frozenset[str] = field(default_factory=frozenset)
    full: bool = False

    @classmethod
    def all_tables(cls) -> DatabaseRegion:
        return cls(full=True)

    @classmethod
    def of(cls, tables: Iterable[str]) -> DatabaseRegion:
        return cls(tables=frozenset(t.lower() for t in tables))

    def intersects(self, tables: Iterable[str]) -> bool:
        if self.full:
            return True
        return not self.tables.isdisjoint(tables)

    def covers(self, tables: Iterable[str]) -> bool:
        if self.full:
            return True
        return self.tables.issuperset(tables)

    def union(self, tables: Iterable[str]) -> DatabaseRegion:
        if self.full:
            return self
        return DatabaseRegion(tables=self.tables | {t.lower() for t in tables})


class TransactionObserver(Protocol):
    """Receives the commits that touch its region."""

    def database_did_commit(self, commit: Commit) -> None: ...


class ChangeTracker:
    """Registry of transaction observers and their regions.

    The writer calls did_commit() while holding the database write lock, so
    observers receive commits in commit order. Registration changes can come
    from any thread; the registry is guarded by its own lock, which is never
    held while observers run.
    """

    def __init__(self) -> None:
        self._observers: dict[TransactionObserver, DatabaseRegion] = {}
        self._lock = threading.Lock()

    @property
    def observer_count(self) -> int:
        with self._lock:
            return len(self._observers)

    def add(self, observer: TransactionObserver, region: DatabaseRegion) -> None:
        """Register an observer. Commits after this call are delivered to it."""
        with self._lock:
            self._observers[observer] = region

    def remove(self, observer: TransactionObserver) -> None:
        """Unregister an observer. Unknown observers are ignored."""
        with self._lock:
            self._observers.pop(observer, None)

    def region_of(self, observer: TransactionObserver) -> DatabaseRegion | None:
        with self._lock:
            return self._observers.get(observer)

    def update_region(self, observer: TransactionObserver, region: DatabaseRegion) -> None:
        """Replace a registered observer's region."""
        with self._lock:
            if observer in self._observers:
                self._observers[observer] = region

    def extend_region(self, observer: TransactionObserver, tables: Iterable[str]) -> bool:
        """Add tables to a registered observer's region. Return True if it grew."""
        tables = {t.lower() for t in tables}
        with self._lock:
            region = self._observers.get(observer)
            if region is None or region.covers(tables):
                return False
            self._observers[observer] = region.union(tables)
            return True

    def did_commit(self, commit: Commit) -> None:
        """Notify every observer whose region intersects the committed tables."""
        with self._lock:
            interested = [obs for obs, region in self._observers.items() if region.intersects(commit.tables)]
        logger.debug(
            "commit dispatched",
            sequence=commit.sequence,
            tables=sorted(commit.tables),
            observers=len(interested),
        )
        for observer in interested:
            observer.database_did_commit(commit)
