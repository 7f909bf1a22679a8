"""Configuration settings for CartSync."""
from functools import lru_cache
from pathlib import Path
from typing import Optional
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Get project root directory (4 levels up from this file)
PROJECT_ROOT = Path(__file__).parent.parent.parent.parent

# Default log directory
DEFAULT_LOG_DIR = PROJECT_ROOT / "logs"
DEFAULT_LOG_FILE = DEFAULT_LOG_DIR / "cartsync.log"

SQLITE_PREFIX = "sqlite+aiosqlite:///"


class CartSyncSettings(BaseSettings):
    """Application settings with environment variable support."""

    # Remote backend selection, fixed for the lifetime of the process
    BACKEND: str = "relational"  # rest, relational

    # Legacy REST backend
    API_URL: str = "http://localhost:3001"
    API_TIMEOUT: float = 10.0

    # Relational backend
    REMOTE_DB_URL: str = f"{SQLITE_PREFIX}cartsync_remote.db"
    DB_ECHO: bool = False

    # Local cache store
    CACHE_DB_URL: str = f"{SQLITE_PREFIX}cartsync_cache.db"

    # Connectivity
    PROBE_TIMEOUT: float = 3.0

    # Sync
    CACHE_MAX_AGE_HOURS: int = 24

    # Basket Settings
    DEFAULT_SUPERMARKET_NAME: str = "Unknown"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[Path] = DEFAULT_LOG_FILE
    LOG_FORMAT: str = "detailed"  # simple, detailed
    LOG_RETENTION_DAYS: int = 7
    LOG_ROTATION_SIZE_MB: int = 1

    model_config = SettingsConfigDict(
        env_prefix="CARTSYNC_",
        case_sensitive=False,
        env_file=PROJECT_ROOT / ".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Convert relative sqlite paths to absolute paths from project root
        self.REMOTE_DB_URL = _absolute_sqlite_url(self.REMOTE_DB_URL)
        self.CACHE_DB_URL = _absolute_sqlite_url(self.CACHE_DB_URL)

        # Ensure log file path is absolute and parent directory exists
        if self.LOG_FILE:
            if not self.LOG_FILE.is_absolute():
                self.LOG_FILE = PROJECT_ROOT / self.LOG_FILE
            self.LOG_FILE.parent.mkdir(parents=True, exist_ok=True)

    @field_validator("BACKEND")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        valid_backends = ["rest", "relational"]
        v = v.lower()
        if v not in valid_backends:
            raise ValueError(f"Backend must be one of: {', '.join(valid_backends)}")
        return v

    @field_validator("API_URL")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("PROBE_TIMEOUT", "API_TIMEOUT")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Timeouts must be positive")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"]
        v = v.upper()
        if v not in valid_levels:
            raise ValueError(f"Log level must be one of: {', '.join(valid_levels)}")
        return v

    @field_validator("LOG_FORMAT")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        valid_formats = ["simple", "detailed"]
        v = v.lower()
        if v not in valid_formats:
            raise ValueError(f"Log format must be one of: {', '.join(valid_formats)}")
        return v


def _absolute_sqlite_url(url: str) -> str:
    """Resolve a relative file-backed sqlite URL against the project root."""
    if not url.startswith(SQLITE_PREFIX):
        return url
    path = url.replace(SQLITE_PREFIX, "", 1)
    if path.startswith(":memory:") or Path(path).is_absolute():
        return url
    return f"{SQLITE_PREFIX}{PROJECT_ROOT / path}"


@lru_cache()
def get_settings() -> CartSyncSettings:
    """Get cached settings instance."""
    return CartSyncSettings()


def clear_settings_cache() -> None:
    """Clear the settings cache to force reload from environment."""
    get_settings.cache_clear()
