"""Configuration helpers for environment-driven settings."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Tuple

from dotenv import load_dotenv

if os.getenv("PYTEST_CURRENT_TEST") is None:
    load_dotenv()


def _split_csv(value: str) -> Tuple[str, ...]:
    return tuple(entry.strip() for entry in value.split(",") if entry.strip())


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(slots=True)
class Settings:
    """Runtime application settings sourced from environment variables."""

    BOT_TOKEN: str = field(init=False)
    ADMIN_CHAT_IDS: Tuple[int, ...] = field(init=False)
    DB_PATH: Path = field(init=False)
    HEADERS: dict[str, str] = field(init=False)
    TICK_SECONDS: float = field(init=False)
    REQUEST_TIMEOUT: float = field(init=False)
    STAGGER_SECONDS: float = field(init=False)
    PROXY_URL: str = field(init=False)
    DEFAULT_CHECK_INTERVAL_MINUTES: int = field(init=False)
    MAX_VALUE_LENGTH: int = field(init=False)
    MONITORING_ENABLED: bool = field(init=False)
    ALERT_TAG_USER: str | None = field(init=False)

    def __post_init__(self) -> None:
        self.reload()

    def reload(self) -> None:
        self.BOT_TOKEN = os.getenv("BOT_TOKEN", "").strip()
        try:
            self.ADMIN_CHAT_IDS = tuple(
                int(chat_id)
                for chat_id in _split_csv(os.getenv("ADMIN_CHAT_IDS", ""))
            )
        except ValueError as exc:
            raise ValueError("ADMIN_CHAT_IDS must be a comma separated list of integers") from exc

        db_path_value = os.getenv("DB_PATH", "data/trackers.db").strip()
        db_path = Path(db_path_value)
        if not db_path.is_absolute():
            db_path = Path.cwd() / db_path
        self.DB_PATH = db_path

        self.HEADERS = {
            "User-Agent": (
                "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
                "AppleWebKit/537.36 (KHTML, like Gecko) "
                "Chrome/124.0.0.0 Safari/537.36"
            )
        }

        try:
            tick = float(os.getenv("TICK_SECONDS", "60"))
        except ValueError as exc:
            raise ValueError("TICK_SECONDS must be a number") from exc
        if tick <= 0:
            raise ValueError("TICK_SECONDS must be positive")
        self.TICK_SECONDS = tick

        try:
            timeout = float(os.getenv("REQUEST_TIMEOUT", "12"))
        except ValueError as exc:
            raise ValueError("REQUEST_TIMEOUT must be a number") from exc
        if timeout <= 0:
            raise ValueError("REQUEST_TIMEOUT must be positive")
        self.REQUEST_TIMEOUT = timeout

        try:
            stagger = float(os.getenv("STAGGER_SECONDS", "2"))
        except ValueError as exc:
            raise ValueError("STAGGER_SECONDS must be a number") from exc
        if stagger < 0:
            raise ValueError("STAGGER_SECONDS cannot be negative")
        self.STAGGER_SECONDS = stagger

        self.PROXY_URL = os.getenv("PROXY_URL", "").strip()

        try:
            interval = int(os.getenv("DEFAULT_CHECK_INTERVAL_MINUTES", "15"))
        except ValueError as exc:
            raise ValueError("DEFAULT_CHECK_INTERVAL_MINUTES must be an integer") from exc
        if interval < 1:
            raise ValueError("DEFAULT_CHECK_INTERVAL_MINUTES must be positive")
        self.DEFAULT_CHECK_INTERVAL_MINUTES = interval

        try:
            max_length = int(os.getenv("MAX_VALUE_LENGTH", "150"))
        except ValueError as exc:
            raise ValueError("MAX_VALUE_LENGTH must be an integer") from exc
        if max_length <= 0:
            raise ValueError("MAX_VALUE_LENGTH must be positive")
        self.MAX_VALUE_LENGTH = max_length

        self.MONITORING_ENABLED = _parse_bool(os.getenv("MONITORING_ENABLED", "1"))
        self.ALERT_TAG_USER = os.getenv("ALERT_TAG_USER", "").strip() or None

    def validate(self) -> None:
        if not self.BOT_TOKEN:
            raise ValueError("BOT_TOKEN is required in .env file")
        if not self.ADMIN_CHAT_IDS:
            raise ValueError("ADMIN_CHAT_IDS is required in .env file")


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Timing and transport knobs handed to the check engine at construction."""

    tick_seconds: float = 60.0
    request_timeout: float = 12.0
    stagger_seconds: float = 2.0
    proxy_url: str = ""
    max_value_length: int = 150
    headers: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.tick_seconds <= 0:
            raise ValueError("tick_seconds must be positive")
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")
        if self.stagger_seconds < 0:
            raise ValueError("stagger_seconds cannot be negative")
        if self.max_value_length <= 0:
            raise ValueError("max_value_length must be positive")

    @classmethod
    def from_settings(cls, source: Settings) -> "EngineConfig":
        return cls(
            tick_seconds=source.TICK_SECONDS,
            request_timeout=source.REQUEST_TIMEOUT,
            stagger_seconds=source.STAGGER_SECONDS,
            proxy_url=source.PROXY_URL,
            max_value_length=source.MAX_VALUE_LENGTH,
            headers=dict(source.HEADERS),
        )


settings = Settings()
