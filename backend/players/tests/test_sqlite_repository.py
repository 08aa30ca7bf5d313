"""Tests for SqlitePlayerRepository."""

from __future__ import annotations

import pytest

from players.models import Ordering, Player
from players.sqlite_repository import NotFoundError, SqlitePlayerRepository
from shared.observation.tracker import DatabaseRegion


class _RecordingObserver:
    def __init__(self) -> None:
        self.commits = []

    def database_did_commit(self, commit) -> None:
        self.commits.append(commit)


async def _seed(repo: SqlitePlayerRepository, *players: tuple[str, int]) -> list[Player]:
    return [await repo.save(Player(name=name, score=score)) for name, score in players]


class TestSave:
    async def test_insert_assigns_id(self, repo: SqlitePlayerRepository) -> None:
        saved = await repo.save(Player(name="Arthur", score=100))

        assert saved.id is not None
        assert await repo.fetch_by_id(saved.id) == saved

    async def test_insert_assigns_increasing_ids(self, repo: SqlitePlayerRepository) -> None:
        first, second = await _seed(repo, ("Arthur", 100), ("Barbara", 1000))
        assert second.id > first.id

    async def test_update_preserves_identity_and_count(self, repo: SqlitePlayerRepository) -> None:
        (arthur,) = await _seed(repo, ("Arthur", 100))

        updated = await repo.save(arthur.model_copy(update={"score": 1000}))

        assert updated.id == arthur.id
        assert await repo.fetch_count() == 1
        assert await repo.fetch_by_id(arthur.id) == Player(id=arthur.id, name="Arthur", score=1000)

    async def test_update_missing_id_raises(self, repo: SqlitePlayerRepository) -> None:
        with pytest.raises(NotFoundError, match="id 42"):
            await repo.save(Player(id=42, name="Ghost", score=0))
        assert await repo.fetch_count() == 0

    async def test_each_save_is_one_commit(self, repo: SqlitePlayerRepository, database) -> None:
        observer = _RecordingObserver()
        database.change_tracker.add(observer, DatabaseRegion.all_tables())

        (arthur,) = await _seed(repo, ("Arthur", 100))
        await repo.save(arthur.model_copy(update={"name": "Art"}))

        assert [c.tables for c in observer.commits] == [frozenset({"player"})] * 2


class TestDelete:
    async def test_delete_existing(self, repo: SqlitePlayerRepository) -> None:
        arthur, barbara = await _seed(repo, ("Arthur", 100), ("Barbara", 1000))

        assert await repo.delete(arthur.id) is True
        assert await repo.fetch_by_id(arthur.id) is None
        assert await repo.fetch_all() == [barbara]

    async def test_delete_missing_returns_false(self, repo: SqlitePlayerRepository) -> None:
        assert await repo.delete(42) is False

    async def test_delete_all_returns_count(self, repo: SqlitePlayerRepository) -> None:
        await _seed(repo, ("Arthur", 100), ("Barbara", 1000), ("Craig", 500))

        assert await repo.delete_all() == 3
        assert await repo.fetch_count() == 0

    async def test_delete_all_on_empty_table(self, repo: SqlitePlayerRepository) -> None:
        assert await repo.delete_all() == 0


class TestFetch:
    async def test_by_score_is_descending_with_ties_by_name(self, repo: SqlitePlayerRepository) -> None:
        await _seed(repo, ("craig", 500), ("Barbara", 1000), ("arthur", 500), ("David", 100))

        names = [p.name for p in await repo.fetch_all(Ordering.BY_SCORE)]

        assert names == ["Barbara", "arthur", "craig", "David"]

    async def test_by_name_ignores_case(self, repo: SqlitePlayerRepository) -> None:
        await _seed(repo, ("craig", 500), ("Barbara", 1000), ("arthur", 500))

        names = [p.name for p in await repo.fetch_all(Ordering.BY_NAME)]

        assert names == ["arthur", "Barbara", "craig"]

    async def test_by_name_sorts_accented_names_with_their_base_letter(self, repo: SqlitePlayerRepository) -> None:
        await _seed(repo, ("Zoe", 100), ("Émile", 200), ("adam", 300))

        names = [p.name for p in await repo.fetch_all(Ordering.BY_NAME)]

        assert names == ["adam", "Émile", "Zoe"]

    async def test_fetch_min_score(self, repo: SqlitePlayerRepository) -> None:
        await _seed(repo, ("Arthur", 100), ("barbara", 1000), ("Craig", 500))

        by_score = await repo.fetch_min_score(500)
        by_name = await repo.fetch_min_score(500, Ordering.BY_NAME)

        assert [p.name for p in by_score] == ["barbara", "Craig"]
        assert [p.name for p in by_name] == ["barbara", "Craig"]
        assert await repo.fetch_min_score(5000) == []

    async def test_fetch_all_empty(self, repo: SqlitePlayerRepository) -> None:
        assert await repo.fetch_all() == []

    async def test_fetch_one_defaults_to_first_inserted(self, repo: SqlitePlayerRepository) -> None:
        craig, _ = await _seed(repo, ("Craig", 500), ("Barbara", 1000))
        assert await repo.fetch_one() == craig

    async def test_fetch_one_in_ordering(self, repo: SqlitePlayerRepository) -> None:
        _, barbara = await _seed(repo, ("Craig", 500), ("Barbara", 1000))
        assert await repo.fetch_one(Ordering.BY_NAME) == barbara
        assert await repo.fetch_one(Ordering.BY_SCORE) == barbara

    async def test_fetch_one_empty(self, repo: SqlitePlayerRepository) -> None:
        assert await repo.fetch_one() is None

    async def test_fetch_by_unknown_id(self, repo: SqlitePlayerRepository) -> None:
        assert await repo.fetch_by_id(42) is None
