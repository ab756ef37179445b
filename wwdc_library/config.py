"""
Configuration management using Pydantic Settings.
Loads from environment variables with sensible defaults for development.
"""

from pathlib import Path
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


def _parse_years(value: str) -> list[int]:
    """Parse a comma-separated list of years, ignoring blanks."""
    if not value:
        return []
    return [int(y.strip()) for y in value.split(",") if y.strip()]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Remote services
    index_url: str = "https://wwdc.guilhermerambo.me/index.json"  # App config document
    transcript_base_url: str = "https://asciiwwdc.com/"  # <base>/<year>/sessions/<id>
    http_timeout_seconds: float = 30.0

    # Paths
    database_path: Path = Path(__file__).parent.parent / "data/wwdc.sqlite"

    # Transcript indexing
    transcript_indexing_enabled: bool = True  # Platforms without local search turn this off
    indexing_max_workers: int = 4
    years_to_ignore_transcript: str = ""  # Comma-separated years, e.g. "2016"
    reloadable_years: str = ""  # Comma-separated years re-checked for missing transcripts

    # Sync schedule
    refresh_interval_seconds: int = 0  # 0 disables periodic refresh
    live_tolerance_seconds: int = -3600  # Added to "now" when deciding if a session is still scheduled

    # Server settings
    host: str = "127.0.0.1"
    port: int = 8000
    debug: bool = False

    @property
    def ignored_transcript_years(self) -> list[int]:
        """Parse comma-separated ignored years into list."""
        return _parse_years(self.years_to_ignore_transcript)

    @property
    def reloadable_year_list(self) -> list[int]:
        """Parse comma-separated reloadable years into list."""
        return _parse_years(self.reloadable_years)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
