"""SQLite database connections: one serialized writer and a pool of snapshot readers."""

from __future__ import annotations

import functools
import os
import sqlite3
import threading
from pathlib import Path
from queue import Empty, SimpleQueue
from typing import TYPE_CHECKING, TypeVar

import structlog
from pyuca import Collator

from shared.observation.tracker import ChangeTracker, Commit

if TYPE_CHECKING:
    from collections.abc import Callable

logger = structlog.get_logger()

T = TypeVar("T")

_DB_FILE_PERMISSIONS = 0o600

DEFAULT_MAX_IDLE_READERS = 4

# Collation used for case-insensitive Unicode ordering of text columns.
LOCALIZED_NOCASE = "localized_nocase"

_WRITE_ACTIONS = {sqlite3.SQLITE_INSERT, sqlite3.SQLITE_UPDATE, sqlite3.SQLITE_DELETE, sqlite3.SQLITE_DROP_TABLE}


class StoreError(Exception):
    """The storage engine failed (I/O, corruption, locking) during a read or write."""


@functools.cache
def _collator() -> Collator:
    return Collator()


@functools.lru_cache(maxsize=4096)
def _collation_key(value: str) -> tuple[int, ...]:
    return _collator().sort_key(value.casefold())


def localized_nocase_compare(left: str, right: str) -> int:
    """Compare strings ignoring case, in Unicode Collation Algorithm order.

    Accented letters sort with their base letter ('Émile' before 'Zoe')
    whatever the process locale is.
    """
    a = _collation_key(left)
    b = _collation_key(right)
    return (a > b) - (a < b)


class _TableAccessRecorder:
    """SQLite authorizer that records which tables statements read and write.

    Installed once per connection. The authorizer runs when a statement is
    prepared, so connections are opened with statement caching disabled.
    """

    def __init__(self) -> None:
        self.reads: set[str] | None = None
        self.writes: set[str] = set()

    def __call__(self, action: int, arg1: str | None, _arg2: str | None, _db: str | None, _src: str | None) -> int:
        if arg1 is None or arg1.startswith("sqlite_"):
            return sqlite3.SQLITE_OK
        if action == sqlite3.SQLITE_READ:
            if self.reads is not None:
                self.reads.add(arg1.lower())
        elif action in _WRITE_ACTIONS:
            self.writes.add(arg1.lower())
        return sqlite3.SQLITE_OK


class Snapshot:
    """A read transaction pinned on a pooled reader connection.

    The snapshot is acquired when the object is created, so every fetch sees
    the database as of that moment regardless of later commits.
    """

    def __init__(
        self,
        database: Database,
        conn: sqlite3.Connection,
        recorder: _TableAccessRecorder,
        sequence: int | None = None,
    ) -> None:
        self._database = database
        self._conn = conn
        self._recorder = recorder
        self._released = False
        # Number of the last commit visible in this snapshot, when known.
        self.sequence = sequence

    def fetch(self, fn: Callable[[sqlite3.Connection], T]) -> tuple[T, frozenset[str]]:
        """Run fn on the snapshot, returning its value and the tables it read."""
        self._recorder.reads = set()
        try:
            value = fn(self._conn)
            return value, frozenset(self._recorder.reads)
        finally:
            self._recorder.reads = None

    def release(self) -> None:
        """End the read transaction and return the connection to the pool."""
        if self._released:
            return
        self._released = True
        self._database._end_read(self._conn)


class Database:
    """SQLite database with a serialized writer and snapshot-isolated readers.

    Writes run one at a time inside ``BEGIN IMMEDIATE`` on the writer
    connection. Reads run on pooled reader connections in WAL mode, each
    inside its own read transaction. Every commit that wrote at least one
    table is reported to the change tracker while the write lock is held,
    so observers see commits in order.

    At most max_idle_readers reader connections stay open between reads;
    readers released beyond that are closed.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        busy_timeout_ms: int = 5000,
        max_idle_readers: int = DEFAULT_MAX_IDLE_READERS,
    ) -> None:
        self._path = str(path)
        if self._path == ":memory:" or self._path.startswith("file::memory:"):
            msg = "Database requires a file path; in-memory databases cannot share snapshots across connections"
            raise ValueError(msg)
        self._busy_timeout_ms = busy_timeout_ms
        self._max_idle_readers = max_idle_readers
        self._conn: sqlite3.Connection | None = None
        self._write_recorder = _TableAccessRecorder()
        self._write_lock = threading.Lock()
        self._readers: SimpleQueue[sqlite3.Connection] = SimpleQueue()
        self._recorders: dict[int, _TableAccessRecorder] = {}
        self._all_readers: list[sqlite3.Connection] = []
        self._readers_lock = threading.Lock()
        self._last_sequence = 0
        self._tracker = ChangeTracker()

    @property
    def path(self) -> str:
        return self._path

    @property
    def connection(self) -> sqlite3.Connection:
        """Return the writer connection or raise if disconnected."""
        if self._conn is None:
            raise RuntimeError("Database is not connected")
        return self._conn

    @property
    def change_tracker(self) -> ChangeTracker:
        return self._tracker

    def connect(self) -> None:
        """Open the writer, enable WAL mode, and harden file permissions."""
        Path(self._path).parent.mkdir(parents=True, exist_ok=True)

        self._conn = self._open(self._write_recorder)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")

        self._harden_permissions()
        logger.info("database connected", path=self._path)

    def close(self) -> None:
        """Close the writer and every reader connection."""
        with self._readers_lock:
            for conn in self._all_readers:
                conn.close()
            self._all_readers.clear()
            self._recorders.clear()
            self._readers = SimpleQueue()
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def write(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        """Run fn inside a write transaction and commit it.

        Any exception raised by fn rolls the transaction back and propagates
        unchanged. SQLite failures are raised as StoreError.
        """
        with self._write_lock:
            conn = self.connection
            self._write_recorder.writes = set()
            try:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    result = fn(conn)
                except BaseException:
                    if conn.in_transaction:
                        conn.execute("ROLLBACK")
                    raise
                conn.execute("COMMIT")
            except sqlite3.Error as exc:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise StoreError(f"Write transaction failed: {exc}") from exc

            tables = frozenset(self._write_recorder.writes)
            if tables:
                self._last_sequence += 1
                commit = Commit(sequence=self._last_sequence, tables=tables)
                self._tracker.did_commit(commit)
            return result

    def read(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        """Run fn against one consistent snapshot of the database."""
        snapshot = self.pin_snapshot()
        try:
            value, _ = snapshot.fetch(fn)
            return value
        except sqlite3.Error as exc:
            raise StoreError(f"Read transaction failed: {exc}") from exc
        finally:
            snapshot.release()

    def pin_snapshot(self, *, between_commits: bool = False) -> Snapshot:
        """Begin a read transaction and acquire its snapshot immediately.

        With between_commits=True, waits for any write in progress so the
        snapshot is known to contain exactly the commits up to
        ``snapshot.sequence``. Must not be called from inside write().
        """
        if not between_commits:
            return self._pin(sequence=None)
        with self._write_lock:
            return self._pin(sequence=self._last_sequence)

    def _pin(self, sequence: int | None) -> Snapshot:
        conn = self._acquire_reader()
        try:
            conn.execute("BEGIN DEFERRED")
            # The first read fixes the WAL snapshot for the whole transaction.
            conn.execute("SELECT 1 FROM sqlite_master LIMIT 1").fetchall()
        except sqlite3.Error as exc:
            self._end_read(conn)
            raise StoreError(f"Could not open read snapshot: {exc}") from exc
        return Snapshot(self, conn, self._recorders[id(conn)], sequence)

    def _end_read(self, conn: sqlite3.Connection) -> None:
        try:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
        except sqlite3.Error:
            logger.warning("discarding reader connection after failed rollback", path=self._path)
            self._discard_reader(conn)
            return
        # Only _end_read() adds to the pool, so the size checked here can
        # only shrink before the put.
        with self._readers_lock:
            if self._readers.qsize() < self._max_idle_readers:
                self._readers.put(conn)
                return
        self._discard_reader(conn)

    def _discard_reader(self, conn: sqlite3.Connection) -> None:
        with self._readers_lock:
            self._recorders.pop(id(conn), None)
            if conn in self._all_readers:
                self._all_readers.remove(conn)
        conn.close()

    def _acquire_reader(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Database is not connected")
        try:
            return self._readers.get_nowait()
        except Empty:
            pass
        recorder = _TableAccessRecorder()
        conn = self._open(recorder)
        conn.execute("PRAGMA query_only=ON")
        with self._readers_lock:
            self._recorders[id(conn)] = recorder
            self._all_readers.append(conn)
        logger.debug("opened reader connection", path=self._path, readers=len(self._all_readers))
        return conn

    def _open(self, recorder: _TableAccessRecorder) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(
                self._path,
                check_same_thread=False,
                isolation_level=None,
                cached_statements=0,
            )
        except sqlite3.Error as exc:
            raise StoreError(f"Could not open database {self._path}: {exc}") from exc
        conn.execute(f"PRAGMA busy_timeout={int(self._busy_timeout_ms)}")
        conn.create_collation(LOCALIZED_NOCASE, localized_nocase_compare)
        conn.set_authorizer(recorder)
        return conn

    def _harden_permissions(self) -> None:
        """Set restrictive file permissions on POSIX systems (best effort).

        Covers the WAL and SHM sibling files too, since they hold database
        content between checkpoints.
        """
        if os.name != "posix":  # pragma: no cover
            return
        for suffix in ("", "-wal", "-shm"):
            p = Path(self._path + suffix)
            if p.exists():
                try:
                    p.chmod(_DB_FILE_PERMISSIONS)
                except OSError:
                    logger.warning("could not set file permissions", permissions=oct(_DB_FILE_PERMISSIONS), path=str(p))
