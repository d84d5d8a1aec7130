"""
Takeamin Assistant — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from src/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str

    # Security
    ALLOWED_USER_IDS: list[int] = []

    # SQLite key-value store
    DATABASE_PATH: str = "data/takeamin.db"

    # Reminder times are wall-clock times in this zone
    TIMEZONE: str = "Asia/Jerusalem"

    # Every-other-day plans get this many one-shot triggers per batch
    EVERY_OTHER_DAY_OCCURRENCES: int = 7

    # Behavioral learning
    LEARNING_MIN_DATA_POINTS: int = 7
    LEARNING_MARGIN: float = 1.5
    LEARNING_CONFIDENCE_THRESHOLD: float = 0.7
    CONSECUTIVE_MISS_THRESHOLD: int = 3

    # Run a read-only audit when the bot starts and warn users about drift
    AUDIT_ON_STARTUP: bool = True

    @field_validator("ALLOWED_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator("AUDIT_ON_STARTUP", mode="before")
    @classmethod
    def parse_flag(cls, v: str | bool) -> bool:
        if isinstance(v, bool):
            return v
        return str(v).strip().lower() in ("1", "true", "yes", "on")


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        ALLOWED_USER_IDS=os.getenv("ALLOWED_USER_IDS", ""),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/takeamin.db"),
        TIMEZONE=os.getenv("TIMEZONE", "Asia/Jerusalem"),
        EVERY_OTHER_DAY_OCCURRENCES=os.getenv("EVERY_OTHER_DAY_OCCURRENCES", "7"),
        LEARNING_MIN_DATA_POINTS=os.getenv("LEARNING_MIN_DATA_POINTS", "7"),
        LEARNING_MARGIN=os.getenv("LEARNING_MARGIN", "1.5"),
        LEARNING_CONFIDENCE_THRESHOLD=os.getenv("LEARNING_CONFIDENCE_THRESHOLD", "0.7"),
        CONSECUTIVE_MISS_THRESHOLD=os.getenv("CONSECUTIVE_MISS_THRESHOLD", "3"),
        AUDIT_ON_STARTUP=os.getenv("AUDIT_ON_STARTUP", "true"),
    )


# Singleton — imported by all other modules as:
#   from src.config import settings
settings = _load_settings()
