"""Read queries over the player table.

Plain functions of a connection, so they run inside Database.read() and as
the fetch function of a ValueObservation alike.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from players.models import Ordering, Player
from shared.db.connection import LOCALIZED_NOCASE

if TYPE_CHECKING:
    import sqlite3

PLAYER_TABLE = "player"

_COLUMNS = "id, name, score"

_ORDER_BY = {
    Ordering.BY_NAME: f"name COLLATE {LOCALIZED_NOCASE}",
    Ordering.BY_SCORE: f"score DESC, name COLLATE {LOCALIZED_NOCASE}",
}


def _to_player(row: tuple[int, str, int]) -> Player:
    return Player(id=row[0], name=row[1], score=row[2])


def fetch_all(conn: sqlite3.Connection, ordering: Ordering = Ordering.BY_SCORE) -> list[Player]:
    rows = conn.execute(f"SELECT {_COLUMNS} FROM {PLAYER_TABLE} ORDER BY {_ORDER_BY[ordering]}").fetchall()
    return [_to_player(row) for row in rows]


def fetch_one(conn: sqlite3.Connection, ordering: Ordering | None = None) -> Player | None:
    """Return the first player in the given ordering (insertion order when None)."""
    order_by = _ORDER_BY[ordering] if ordering is not None else "id"
    row = conn.execute(f"SELECT {_COLUMNS} FROM {PLAYER_TABLE} ORDER BY {order_by} LIMIT 1").fetchone()
    return _to_player(row) if row is not None else None


def fetch_by_id(conn: sqlite3.Connection, player_id: int) -> Player | None:
    row = conn.execute(f"SELECT {_COLUMNS} FROM {PLAYER_TABLE} WHERE id = ?", (player_id,)).fetchone()
    return _to_player(row) if row is not None else None


def fetch_count(conn: sqlite3.Connection) -> int:
    return conn.execute(f"SELECT COUNT(*) FROM {PLAYER_TABLE}").fetchone()[0]


def fetch_min_score(conn: sqlite3.Connection, min_score: int, ordering: Ordering = Ordering.BY_SCORE) -> list[Player]:
    """Return players scoring at least min_score."""
    rows = conn.execute(
        f"SELECT {_COLUMNS} FROM {PLAYER_TABLE} WHERE score >= ? ORDER BY {_ORDER_BY[ordering]}",
        (min_score,),
    ).fetchall()
    return [_to_player(row) for row in rows]
