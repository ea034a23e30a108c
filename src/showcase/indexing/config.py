from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field


def _default_data_root() -> Path:
    return Path(os.getenv("SHOWCASE_DATA_ROOT", str(Path.home() / ".showcase"))).expanduser()


def _default_database_path() -> Path | None:
    raw = os.getenv("SHOWCASE_DB_PATH")
    return Path(raw).expanduser() if raw else None


class IndexingSettings(BaseModel):
    """Runtime configuration for the indexing run."""

    discord_token: str | None = Field(default_factory=lambda: os.getenv("DISCORD_BOT_TOKEN"))
    discord_api_base: str = Field(
        default_factory=lambda: os.getenv("DISCORD_API_BASE", "https://discord.com/api/v10")
    )
    data_root: Path = Field(default_factory=_default_data_root)
    database_path: Path | None = Field(default_factory=_default_database_path)
    page_size: int = Field(default=100, ge=1, le=100)
    rate_limit_delay_seconds: float = Field(
        default_factory=lambda: float(os.getenv("INDEXING_RATE_LIMIT_DELAY", "5"))
    )
    download_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("INDEXING_DOWNLOAD_TIMEOUT", "30"))
    )
    lock_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("INDEXING_LOCK_TIMEOUT", "10"))
    )
    cleanup_age_days: int = Field(default_factory=lambda: int(os.getenv("CLEANUP_AGE_DAYS", "30")))

    @property
    def image_cache_dir(self) -> Path:
        return self.data_root / "images" / "cached"

    @property
    def resolved_database_path(self) -> Path:
        return self.database_path or self.data_root / "showcase.db"

    @property
    def authorization_header(self) -> str | None:
        token = (self.discord_token or "").strip()
        if not token:
            return None
        return token if token.startswith("Bot ") else f"Bot {token}"


@lru_cache(maxsize=1)
def get_settings() -> IndexingSettings:
    return IndexingSettings()


__all__ = ["IndexingSettings", "get_settings"]
