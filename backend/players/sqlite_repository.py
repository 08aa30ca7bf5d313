"""SQLite-backed player repository."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from players import queries
from players.models import Ordering, Player
from players.queries import PLAYER_TABLE
from players.repository import PlayerRepository

if TYPE_CHECKING:
    import sqlite3

    from shared.db.connection import Database

logger = structlog.get_logger()


class NotFoundError(Exception):
    """An update targeted a player id that does not exist."""


class SqlitePlayerRepository(PlayerRepository):
    """SQLite implementation of PlayerRepository.

    Every mutation is one write transaction on the database writer, so each
    one is a single commit for observers. Reads run on a snapshot.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    async def save(self, player: Player) -> Player:
        """Insert a new player or update an existing one.

        Returns the saved player, carrying its assigned id after an insert.
        Raises NotFoundError when updating an id that does not exist.
        """
        if player.id is None:
            player_id = self._db.write(lambda conn: self._insert(conn, player))
            logger.debug("inserted player", player_id=player_id)
            return player.model_copy(update={"id": player_id})
        self._db.write(lambda conn: self._update(conn, player))
        logger.debug("updated player", player_id=player.id)
        return player

    async def delete(self, player_id: int) -> bool:
        """Delete one player. Return False when no such player exists."""
        deleted = self._db.write(
            lambda conn: conn.execute(f"DELETE FROM {PLAYER_TABLE} WHERE id = ?", (player_id,)).rowcount,
        )
        return deleted > 0

    async def delete_all(self) -> int:
        """Delete every player in one transaction. Return how many were deleted."""
        count = self._db.write(lambda conn: conn.execute(f"DELETE FROM {PLAYER_TABLE}").rowcount)
        logger.info("deleted all players", count=count)
        return count

    async def fetch_all(self, ordering: Ordering = Ordering.BY_SCORE) -> list[Player]:
        return self._db.read(lambda conn: queries.fetch_all(conn, ordering))

    async def fetch_one(self, ordering: Ordering | None = None) -> Player | None:
        return self._db.read(lambda conn: queries.fetch_one(conn, ordering))

    async def fetch_by_id(self, player_id: int) -> Player | None:
        return self._db.read(lambda conn: queries.fetch_by_id(conn, player_id))

    async def fetch_min_score(self, min_score: int, ordering: Ordering = Ordering.BY_SCORE) -> list[Player]:
        return self._db.read(lambda conn: queries.fetch_min_score(conn, min_score, ordering))

    async def fetch_count(self) -> int:
        return self._db.read(queries.fetch_count)

    @staticmethod
    def _insert(conn: sqlite3.Connection, player: Player) -> int:
        cursor = conn.execute(
            f"INSERT INTO {PLAYER_TABLE} (name, score) VALUES (?, ?)",
            (player.name, player.score),
        )
        return cursor.lastrowid

    @staticmethod
    def _update(conn: sqlite3.Connection, player: Player) -> None:
        cursor = conn.execute(
            f"UPDATE {PLAYER_TABLE} SET name = ?, score = ? WHERE id = ?",
            (player.name, player.score, player.id),
        )
        if cursor.rowcount == 0:
            raise NotFoundError(f"Player with id {player.id} does not exist")
