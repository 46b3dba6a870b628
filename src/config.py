"""
Routine Tracker — Centralized configuration.

Loads all settings from .env and validates them.
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

_NOTIFIER_PROVIDERS = ("log", "telegram")


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # SQLite (local system of record)
    DATABASE_PATH: str = "data/routine.db"

    # Remote authority for user sync
    SYNC_API_BASE_URL: str = "http://localhost:3000"
    SYNC_TIMEOUT_SECONDS: float = 15.0
    SYNC_MAX_ATTEMPTS: int = 0        # 0 → retry transient failures forever
    SYNC_TERMINAL_ON_REJECT: bool = False  # stop retrying users the server rejects with 4xx
    CONNECTIVITY_POLL_SECONDS: float = 30.0

    # Notification delivery: "log" | "telegram"
    NOTIFIER_PROVIDER: str = "log"
    TELEGRAM_BOT_TOKEN: str = ""
    TELEGRAM_CHAT_ID: int = 0

    # Security
    HASH_PASSWORDS: bool = True

    LOG_LEVEL: str = "INFO"

    @field_validator("SYNC_API_BASE_URL")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.strip().rstrip("/")

    @field_validator("SYNC_MAX_ATTEMPTS", "TELEGRAM_CHAT_ID", mode="before")
    @classmethod
    def parse_int(cls, v: str | int) -> int:
        if isinstance(v, str) and not v.strip():
            return 0
        return int(v)

    @field_validator("HASH_PASSWORDS", "SYNC_TERMINAL_ON_REJECT", mode="before")
    @classmethod
    def parse_bool(cls, v: str | bool) -> bool:
        if isinstance(v, bool):
            return v
        return str(v).strip().lower() not in ("0", "false", "no", "off")

    @field_validator("NOTIFIER_PROVIDER", "LOG_LEVEL")
    @classmethod
    def normalize(cls, v: str) -> str:
        return v.strip()


def _load_settings() -> Settings:
    """Load settings from environment, rejecting unusable combinations."""
    provider = os.getenv("NOTIFIER_PROVIDER", "log").strip().lower()
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")
    base_url = os.getenv("SYNC_API_BASE_URL", "http://localhost:3000")

    if provider not in _NOTIFIER_PROVIDERS:
        print(f"ERROR: NOTIFIER_PROVIDER must be one of {_NOTIFIER_PROVIDERS}", file=sys.stderr)
        sys.exit(1)

    if provider == "telegram" and (not token or token.startswith("your-")):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    if not base_url.startswith(("http://", "https://")):
        print("ERROR: SYNC_API_BASE_URL must be an http(s) URL", file=sys.stderr)
        sys.exit(1)

    return Settings(
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/routine.db"),
        SYNC_API_BASE_URL=base_url,
        SYNC_TIMEOUT_SECONDS=os.getenv("SYNC_TIMEOUT_SECONDS", "15"),
        SYNC_MAX_ATTEMPTS=os.getenv("SYNC_MAX_ATTEMPTS", "0"),
        SYNC_TERMINAL_ON_REJECT=os.getenv("SYNC_TERMINAL_ON_REJECT", "false"),
        CONNECTIVITY_POLL_SECONDS=os.getenv("CONNECTIVITY_POLL_SECONDS", "30"),
        NOTIFIER_PROVIDER=provider,
        TELEGRAM_BOT_TOKEN=token,
        TELEGRAM_CHAT_ID=os.getenv("TELEGRAM_CHAT_ID", "0"),
        HASH_PASSWORDS=os.getenv("HASH_PASSWORDS", "true"),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
    )


# Singleton, imported by all other modules as:
#   from src.config import settings
settings = _load_settings()
