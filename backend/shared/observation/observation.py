"""Observe the result of a database query as the database changes.

A ValueObservation wraps a read-only fetch function. Starting it registers
with the database change tracker, fetches an initial value, and re-runs the
fetch on the snapshot left by every commit that touches the observed tables.
Changed values are delivered to a callback on the observation's scheduler.

Threading:
- The writer thread pins the post-commit snapshot and queues the re-run.
- Re-runs execute in commit order on a single worker thread per observation.
- Callbacks run on the scheduler, gated by a re-entrant delivery lock shared
  with cancel(): once cancel() returns, no callback runs.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

import structlog

from shared.observation.scheduler import AsyncioScheduler
from shared.observation.tracker import DatabaseRegion

if TYPE_CHECKING:
    import sqlite3
    from collections.abc import Callable, Iterable

    from shared.db.connection import Database, Snapshot
    from shared.observation.scheduler import Scheduler
    from shared.observation.tracker import Commit

logger = structlog.get_logger()

T = TypeVar("T")

_UNSET: Any = object()

# Re-runs an observation may have queued, each holding a pinned snapshot.
DEFAULT_MAX_PENDING_SNAPSHOTS = 32


class QueryError(Exception):
    """An observed query failed. The underlying exception is the __cause__."""


class ObservationState(StrEnum):
    CREATED = "created"
    ACTIVE = "active"
    TERMINATED = "terminated"
    CANCELLED = "cancelled"


class ValueObservation(Generic[T]):
    """Description of an observed query. Call start() to begin observing.

    With tables=None the observed region is inferred from the tables each
    fetch reads; otherwise it is exactly the declared tables.

    Every commit is fetched on its own snapshot while the observation keeps
    up. Once max_pending_snapshots re-runs are queued, further commits are
    not pinned: after the queue drains, one fetch on the latest state covers
    them. With max_pending_snapshots=None no commit is ever coalesced and
    each queued re-run holds a reader connection.
    """

    def __init__(
        self,
        fetch: Callable[[sqlite3.Connection], T],
        *,
        tables: Iterable[str] | None = None,
        remove_duplicates: bool = True,
        max_pending_snapshots: int | None = DEFAULT_MAX_PENDING_SNAPSHOTS,
    ) -> None:
        if max_pending_snapshots is not None and max_pending_snapshots < 1:
            raise ValueError("max_pending_snapshots must be at least 1")
        self.fetch = fetch
        self.region = DatabaseRegion.of(tables) if tables is not None else None
        self.remove_duplicates = remove_duplicates
        self.max_pending_snapshots = max_pending_snapshots

    @classmethod
    def tracking(
        cls,
        fetch: Callable[[sqlite3.Connection], T],
        *,
        remove_duplicates: bool = True,
        max_pending_snapshots: int | None = DEFAULT_MAX_PENDING_SNAPSHOTS,
    ) -> ValueObservation[T]:
        """Observe fetch, watching whatever tables it reads."""
        return cls(fetch, remove_duplicates=remove_duplicates, max_pending_snapshots=max_pending_snapshots)

    @classmethod
    def tracking_tables(
        cls,
        tables: Iterable[str],
        fetch: Callable[[sqlite3.Connection], T],
        *,
        remove_duplicates: bool = True,
        max_pending_snapshots: int | None = DEFAULT_MAX_PENDING_SNAPSHOTS,
    ) -> ValueObservation[T]:
        """Observe fetch, re-running it on commits to the given tables only."""
        return cls(
            fetch,
            tables=tables,
            remove_duplicates=remove_duplicates,
            max_pending_snapshots=max_pending_snapshots,
        )

    def start(
        self,
        database: Database,
        *,
        on_error: Callable[[QueryError], None],
        on_change: Callable[[T], None],
        scheduler: Scheduler | None = None,
    ) -> ObservationHandle[T]:
        """Start observing and return the handle that cancels the observation.

        The initial value is delivered once, before any change. Without an
        explicit scheduler, callbacks run on the current asyncio event loop.
        """
        handle = ObservationHandle(
            self,
            database,
            scheduler if scheduler is not None else AsyncioScheduler(),
            on_error=on_error,
            on_change=on_change,
        )
        handle._start()
        return handle


class ObservationHandle(Generic[T]):
    """A running observation. Cancel it to stop deliveries."""

    def __init__(
        self,
        observation: ValueObservation[T],
        database: Database,
        scheduler: Scheduler,
        *,
        on_error: Callable[[QueryError], None],
        on_change: Callable[[T], None],
    ) -> None:
        self._observation = observation
        self._database = database
        self._tracker = database.change_tracker
        self._scheduler = scheduler
        self._on_error = on_error
        self._on_change = on_change

        self._state = ObservationState.CREATED
        self._cancelled = False
        self._state_lock = threading.Lock()
        self._delivery_lock = threading.RLock()
        self._worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="observation")

        # Worker-thread state.
        self._last_value: Any = _UNSET
        self._last_sequence = 0

        # Guarded by _state_lock.
        self._pending_snapshots = 0
        self._catch_up_queued = False

        self._log = logger.bind(observation=f"{id(self):x}")

    @property
    def state(self) -> ObservationState:
        return self._state

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Stop the observation. No callback runs after this returns.

        Safe to call from a callback and more than once. Cancelling a
        terminated observation only drops its undelivered callbacks.
        """
        with self._delivery_lock:
            self._cancelled = True
            with self._state_lock:
                was_live = self._state in (ObservationState.CREATED, ObservationState.ACTIVE)
                if was_live:
                    self._state = ObservationState.CANCELLED
        if was_live:
            self._tracker.remove(self)
            # Queued re-runs still run to release their snapshots; they see
            # the cancelled state and skip the fetch.
            self._worker.shutdown(wait=False)
            self._log.debug("observation cancelled")

    def _start(self) -> None:
        region = self._observation.region or DatabaseRegion.all_tables()
        with self._state_lock:
            self._state = ObservationState.ACTIVE
            self._tracker.add(self, region)
            self._worker.submit(self._initial_fetch)
        self._log.debug("observation started", tables=sorted(region.tables), all_tables=region.full)

    # Writer thread

    def database_did_commit(self, commit: Commit) -> None:
        with self._state_lock:
            if self._state is not ObservationState.ACTIVE:
                return
            limit = self._observation.max_pending_snapshots
            if limit is not None and self._pending_snapshots >= limit:
                if not self._catch_up_queued:
                    self._catch_up_queued = True
                    self._worker.submit(self._catch_up)
                    self._log.warning("observation fell behind, coalescing commits", pending=self._pending_snapshots)
                return
            try:
                snapshot = self._database.pin_snapshot()
            except Exception as exc:  # noqa: BLE001 -- reported through on_error
                self._worker.submit(self._fail, exc)
                return
            snapshot.sequence = commit.sequence
            self._pending_snapshots += 1
            self._worker.submit(self._refetch, snapshot)

    # Worker thread

    def _initial_fetch(self) -> None:
        if self._state is not ObservationState.ACTIVE:
            return
        try:
            value, tables, sequence = self._fetch_between_commits()
        except Exception as exc:  # noqa: BLE001 -- reported through on_error
            self._fail(exc)
            return
        if self._observation.region is None:
            self._tracker.update_region(self, DatabaseRegion.of(tables))
        self._last_sequence = sequence
        self._publish(value, initial=True)

    def _refetch(self, snapshot: Snapshot) -> None:
        try:
            if self._state is not ObservationState.ACTIVE:
                return
            sequence = snapshot.sequence or 0
            if sequence <= self._last_sequence:
                # Already reflected by a later snapshot.
                return
            try:
                value, tables = snapshot.fetch(self._observation.fetch)
            except Exception as exc:  # noqa: BLE001 -- reported through on_error
                self._fail(exc)
                return
        finally:
            snapshot.release()
            with self._state_lock:
                self._pending_snapshots -= 1
        self._last_sequence = sequence
        self._publish_latest(value, tables)

    def _catch_up(self) -> None:
        # Queued behind every pending re-run; its snapshot includes each
        # commit dropped while the queue was full.
        with self._state_lock:
            self._catch_up_queued = False
            if self._state is not ObservationState.ACTIVE:
                return
        try:
            value, tables, sequence = self._fetch_between_commits()
        except Exception as exc:  # noqa: BLE001 -- reported through on_error
            self._fail(exc)
            return
        if sequence <= self._last_sequence:
            return
        self._last_sequence = sequence
        self._log.debug("observation caught up", sequence=sequence)
        self._publish_latest(value, tables)

    def _publish_latest(self, value: T, tables: frozenset[str]) -> None:
        # A re-run may read tables the region does not cover yet. Commits to
        # those tables before the region grew were not reported, so fetch
        # again from a snapshot taken after the region was extended.
        while self._observation.region is None and self._tracker.extend_region(self, tables):
            self._log.debug("observed region grew", tables=sorted(tables))
            try:
                value, tables, self._last_sequence = self._fetch_between_commits()
            except Exception as exc:  # noqa: BLE001 -- reported through on_error
                self._fail(exc)
                return
        self._publish(value)

    def _fetch_between_commits(self) -> tuple[T, frozenset[str], int]:
        snapshot = self._database.pin_snapshot(between_commits=True)
        try:
            value, tables = snapshot.fetch(self._observation.fetch)
        finally:
            snapshot.release()
        return value, tables, snapshot.sequence or 0

    def _publish(self, value: T, *, initial: bool = False) -> None:
        if self._state is not ObservationState.ACTIVE:
            return
        if not initial and self._observation.remove_duplicates and value == self._last_value:
            self._log.debug("observed value unchanged", sequence=self._last_sequence)
            return
        self._last_value = value
        self._scheduler.schedule(lambda: self._deliver(self._on_change, value))

    def _fail(self, exc: BaseException) -> None:
        with self._state_lock:
            if self._state is not ObservationState.ACTIVE:
                return
            self._state = ObservationState.TERMINATED
        self._tracker.remove(self)
        self._worker.shutdown(wait=False)
        self._log.warning("observation terminated by query failure", error=str(exc))

        error = QueryError(f"Observed query failed: {exc}")
        error.__cause__ = exc
        self._scheduler.schedule(lambda: self._deliver(self._on_error, error))

    # Delivery context

    def _deliver(self, callback: Callable[[Any], None], argument: Any) -> None:
        with self._delivery_lock:
            if self._cancelled:
                return
            try:
                callback(argument)
            except Exception:
                self._log.exception("observation callback raised")
