"""Abstract interface for player persistence."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from players.models import Ordering, Player


class PlayerRepository(ABC):
    """Abstract interface for player persistence."""

    @abstractmethod
    async def save(self, player: Player) -> Player: ...

    @abstractmethod
    async def delete(self, player_id: int) -> bool: ...

    @abstractmethod
    async def delete_all(self) -> int: ...

    @abstractmethod
    async def fetch_all(self, ordering: Ordering) -> list[Player]: ...

    @abstractmethod
    async def fetch_one(self, ordering: Ordering | None = None) -> Player | None: ...

    @abstractmethod
    async def fetch_by_id(self, player_id: int) -> Player | None: ...

    @abstractmethod
    async def fetch_min_score(self, min_score: int, ordering: Ordering) -> list[Player]: ...

    @abstractmethod
    async def fetch_count(self) -> int: ...
