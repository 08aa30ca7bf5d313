"""Shared fixtures for players tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from players.schema import open_database
from players.settings import PlayersSettings
from players.sqlite_repository import SqlitePlayerRepository

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def settings(tmp_path: Path) -> PlayersSettings:
    return PlayersSettings(database_path=str(tmp_path / "players.db"))


@pytest.fixture
def database(settings: PlayersSettings):
    db = open_database(settings)
    yield db
    db.close()


@pytest.fixture
def repo(database) -> SqlitePlayerRepository:
    return SqlitePlayerRepository(database)
