"""Player record and the orderings used to list players."""

from enum import StrEnum

from pydantic import BaseModel


class Player(BaseModel, frozen=True):
    """A row of the player table. id is None until the player is first saved."""

    id: int | None = None
    name: str
    score: int


class Ordering(StrEnum):
    BY_NAME = "by_name"  # ascending, case-insensitive
    BY_SCORE = "by_score"  # descending, ties by name
