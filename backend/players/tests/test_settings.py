import pytest
from pydantic import ValidationError

from players.settings import PlayersSettings


class TestPlayersSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("PLAYERS_BUSY_TIMEOUT_MS", raising=False)
        settings = PlayersSettings()
        assert settings.database_path == "backend/players.db"
        assert settings.busy_timeout_ms == 5000
        assert settings.max_idle_readers == 4
        assert settings.erase_on_schema_change is False
        assert settings.log_dir is None

    def test_reads_prefixed_env(self, monkeypatch):
        monkeypatch.setenv("PLAYERS_DATABASE_PATH", "/tmp/other.db")
        monkeypatch.setenv("PLAYERS_BUSY_TIMEOUT_MS", "250")
        monkeypatch.setenv("PLAYERS_ERASE_ON_SCHEMA_CHANGE", "true")
        monkeypatch.setenv("PLAYERS_LOG_DIR", "/tmp/logs")

        settings = PlayersSettings()

        assert settings.database_path == "/tmp/other.db"
        assert settings.busy_timeout_ms == 250
        assert settings.erase_on_schema_change is True
        assert settings.log_dir == "/tmp/logs"

    def test_test_env_file_is_loaded(self):
        assert PlayersSettings().busy_timeout_ms == 2000

    def test_rejects_negative_busy_timeout(self, monkeypatch):
        monkeypatch.setenv("PLAYERS_BUSY_TIMEOUT_MS", "-1")
        with pytest.raises(ValidationError):
            PlayersSettings()

    def test_rejects_zero_idle_readers(self, monkeypatch):
        monkeypatch.setenv("PLAYERS_MAX_IDLE_READERS", "0")
        with pytest.raises(ValidationError):
            PlayersSettings()

    def test_rejects_empty_database_path(self):
        with pytest.raises(ValidationError):
            PlayersSettings(database_path="")
