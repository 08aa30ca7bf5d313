"""Live, ordered list of all players."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

import structlog

from players import queries
from players.models import Ordering, Player
from shared.observation.observation import ValueObservation
from shared.observation.scheduler import AsyncioScheduler

if TYPE_CHECKING:
    from shared.db.connection import Database
    from shared.observation.observation import ObservationHandle, QueryError
    from shared.observation.scheduler import Scheduler

logger = structlog.get_logger()


class PlayerListModel:
    """Keep the list of all players up to date with the database.

    players stays empty until observe_players() is called. Changing ordering
    replaces the running observation with one sorted the new way; players
    keeps its previous value until the new observation delivers.

    Not thread-safe: use it from the thread that runs its scheduler (the
    event loop by default).
    """

    def __init__(
        self,
        database: Database,
        *,
        ordering: Ordering = Ordering.BY_SCORE,
        scheduler: Scheduler | None = None,
    ) -> None:
        self._database = database
        self._ordering = ordering
        self._scheduler = scheduler if scheduler is not None else AsyncioScheduler()
        self._players: list[Player] = []
        self._last_error: QueryError | None = None
        self._handle: ObservationHandle[list[Player]] | None = None
        self._lock = threading.Lock()

    @property
    def players(self) -> list[Player]:
        return self._players

    @property
    def last_error(self) -> QueryError | None:
        """The error that stopped the current observation, if any. players is stale then."""
        return self._last_error

    @property
    def ordering(self) -> Ordering:
        return self._ordering

    @ordering.setter
    def ordering(self, value: Ordering) -> None:
        if value == self._ordering:
            return
        self._ordering = value
        self.observe_players()

    @property
    def is_observing(self) -> bool:
        return self._handle is not None

    def observe_players(self) -> None:
        """Start observing all players in the current ordering.

        The previous observation, if any, is cancelled before the new one
        makes its first read.
        """
        ordering = self._ordering
        observation = ValueObservation.tracking_tables(
            [queries.PLAYER_TABLE],
            lambda conn: queries.fetch_all(conn, ordering),
        )
        with self._lock:
            if self._handle is not None:
                self._handle.cancel()
            self._last_error = None
            self._handle = observation.start(
                self._database,
                scheduler=self._scheduler,
                on_error=self._observation_failed,
                on_change=self._players_changed,
            )
        logger.debug("observing players", ordering=ordering)

    def stop(self) -> None:
        """Cancel the running observation. players keeps its last value."""
        with self._lock:
            if self._handle is not None:
                self._handle.cancel()
                self._handle = None

    def _players_changed(self, players: list[Player]) -> None:
        self._players = players

    def _observation_failed(self, error: QueryError) -> None:
        self._last_error = error
        logger.error("player observation failed", ordering=self._ordering, error=str(error))
