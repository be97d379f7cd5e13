from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent


class Settings(BaseSettings):
    database_url: str = f"sqlite:///{BASE_DIR / 'scheduler.db'}"
    db_timeout_seconds: float = 30.0
    echo_sql: bool = False
    log_level: str = "INFO"

    cors_origins: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # at most this many "available" slots are shown per day
    display_cap: int = 2
    max_availability_days: int = 92

    booking_fee: float = 1.0

    compensation_attempts: int = 3
    compensation_backoff_seconds: float = 0.2

    model_config = SettingsConfigDict(
        env_prefix="SCHEDULER_",
        env_file=BASE_DIR.parent / ".env",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
