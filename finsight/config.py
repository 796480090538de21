from __future__ import annotations

import logging
import os
from dataclasses import dataclass

DEFAULT_DATABASE_URL = "sqlite:///./finsight.db"
DEFAULT_FRONTEND_ORIGIN = "http://localhost:3000"
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_RECENT_LIMIT = 5

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    frontend_origin: str = DEFAULT_FRONTEND_ORIGIN
    log_level: str = DEFAULT_LOG_LEVEL
    recent_transactions_limit: int = DEFAULT_RECENT_LIMIT

    @property
    def connect_args(self) -> dict:
        if self.database_url.startswith("sqlite"):
            return {"check_same_thread": False}
        return {}


def load_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
        frontend_origin=os.getenv("FRONTEND_ORIGIN", DEFAULT_FRONTEND_ORIGIN),
        log_level=get_log_level(),
        recent_transactions_limit=get_recent_limit(),
    )


def get_log_level() -> str:
    raw = os.getenv("LOG_LEVEL", DEFAULT_LOG_LEVEL).strip().upper()
    if raw not in LOG_LEVELS:
        return DEFAULT_LOG_LEVEL
    return raw


def get_recent_limit() -> int:
    raw = os.getenv("RECENT_TRANSACTIONS_LIMIT", str(DEFAULT_RECENT_LIMIT))
    try:
        value = int(raw)
    except ValueError:
        return DEFAULT_RECENT_LIMIT
    return value if value > 0 else DEFAULT_RECENT_LIMIT


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
