from __future__ import annotations

import os
from pathlib import Path
from zoneinfo import ZoneInfo

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")
    """Application runtime configuration."""

    app_name: str = "Workhours"
    host: str = os.getenv("WH_HOST", "127.0.0.1")
    port: int = int(os.getenv("WH_PORT", "8080"))
    log_level: str = os.getenv("WH_LOG_LEVEL", "INFO")

    storage_backend: str = os.getenv("WH_STORAGE", "sqlite")
    sqlite_path: Path = Path(os.getenv("WH_SQLITE_PATH", "./data/workhours.db"))
    json_dir: Path = Path(os.getenv("WH_JSON_DIR", "./data/state"))

    timezone: str = os.getenv("TZ", "Europe/Berlin")
    # Python weekday numbering (Monday=0); 6 starts the week on Sunday.
    first_weekday: int = int(os.getenv("WH_FIRST_WEEKDAY", "6"))
    note_max_words: int = int(os.getenv("WH_NOTE_MAX_WORDS", "30"))

    geocoder_enabled: bool = os.getenv("WH_GEOCODER_ENABLED", "false").lower() == "true"
    geocoder_url: str = os.getenv("WH_GEOCODER_URL", "https://nominatim.openstreetmap.org")
    geocoder_user_agent: str = os.getenv("WH_GEOCODER_USER_AGENT", "workhours/0.1")
    geocoder_min_interval: float = float(os.getenv("WH_GEOCODER_MIN_INTERVAL", "2.0"))
    geocoder_cache_ttl: float = float(os.getenv("WH_GEOCODER_CACHE_TTL", "3600"))
    geocoder_timeout: int = int(os.getenv("WH_GEOCODER_TIMEOUT", "10"))

    @field_validator("storage_backend")
    @classmethod
    def _check_backend(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {"sqlite", "json", "memory"}:
            raise ValueError(f"Unsupported storage backend: {value}")
        return normalized

    @field_validator("first_weekday")
    @classmethod
    def _check_weekday(cls, value: int) -> int:
        if not 0 <= value <= 6:
            raise ValueError("first_weekday must be between 0 (Monday) and 6 (Sunday)")
        return value

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


settings = Settings()
