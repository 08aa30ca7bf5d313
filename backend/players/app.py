"""Application entry point for the players store."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from players.list_model import PlayerListModel
from players.schema import open_database
from players.settings import PlayersSettings
from players.sqlite_repository import SqlitePlayerRepository
from shared.logging import setup_logging

if TYPE_CHECKING:
    from shared.db.connection import Database
    from shared.observation.scheduler import Scheduler


@dataclass
class PlayersApp:
    """The opened database and the repository writing to it."""

    database: Database
    players: SqlitePlayerRepository

    def list_model(self, scheduler: Scheduler | None = None) -> PlayerListModel:
        """Return a list model reading from this app's database."""
        return PlayerListModel(self.database, scheduler=scheduler)

    def close(self) -> None:
        self.database.close()


def create_app(settings: PlayersSettings | None = None, *, configure_logging: bool = True) -> PlayersApp:
    """Configure logging, open and migrate the database, and build the repository."""
    settings = settings or PlayersSettings()
    if configure_logging:
        setup_logging(log_dir=settings.log_dir)
    database = open_database(settings)
    return PlayersApp(database=database, players=SqlitePlayerRepository(database))
