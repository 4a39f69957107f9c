import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///buzzer.db")
    SQL_ECHO = _env_bool("SQL_ECHO")

    # Only applied to pooled (non-SQLite) engines
    DB_POOL_SIZE = int(os.environ.get("DB_POOL_SIZE", 5))
    DB_MAX_OVERFLOW = int(os.environ.get("DB_MAX_OVERFLOW", 10))

    QUESTION_POOL_LIMIT = int(os.environ.get("QUESTION_POOL_LIMIT", 200))
    JOIN_CODE_LENGTH = int(os.environ.get("JOIN_CODE_LENGTH", 6))
    JOIN_CODE_ATTEMPTS = int(os.environ.get("JOIN_CODE_ATTEMPTS", 5))

    POLL_INTERVAL_MS = int(os.environ.get("POLL_INTERVAL_MS", 1000))
    MAX_EVENTS_PER_POLL = int(os.environ.get("MAX_EVENTS_PER_POLL", 100))

    LOG_DIR = Path(os.environ.get("LOG_DIR", Path(__file__).parent / "logs"))
    CORS_ORIGINS = [o.strip() for o in os.environ.get("CORS_ORIGINS", "*").split(",") if o.strip()]


config = Config()
