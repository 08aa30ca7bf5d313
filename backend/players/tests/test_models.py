import pytest
from pydantic import ValidationError

from players.models import Ordering, Player


class TestPlayer:
    def test_new_player_has_no_id(self):
        assert Player(name="Arthur", score=100).id is None

    def test_is_frozen(self):
        player = Player(name="Arthur", score=100)
        with pytest.raises(ValidationError):
            player.score = 200  # type: ignore[misc]

    def test_equality_is_by_value(self):
        assert Player(id=1, name="Arthur", score=100) == Player(id=1, name="Arthur", score=100)
        assert Player(id=1, name="Arthur", score=100) != Player(id=2, name="Arthur", score=100)

    def test_rejects_missing_score(self):
        with pytest.raises(ValidationError):
            Player(name="Arthur")  # type: ignore[call-arg]


class TestOrdering:
    def test_values(self):
        assert Ordering("by_name") is Ordering.BY_NAME
        assert Ordering("by_score") is Ordering.BY_SCORE
