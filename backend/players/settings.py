"""Settings for the players database."""

from pydantic import Field
from pydantic_settings import BaseSettings


class PlayersSettings(BaseSettings):
    model_config = {"env_prefix": "PLAYERS_"}

    # SQLite database file path (WAL mode needs a real file)
    database_path: str = Field(default="backend/players.db", min_length=1)

    # How long a connection waits on a locked database before failing
    busy_timeout_ms: int = Field(default=5000, ge=0)

    # Reader connections kept open between reads; extra ones are closed
    max_idle_readers: int = Field(default=4, ge=1)

    # Wipe and rebuild the database when migrations were edited (development only)
    erase_on_schema_change: bool = False

    # Directory for datetime-stamped log files; stdout only when unset
    log_dir: str | None = None
