"""Application Configuration using Pydantic Settings."""

import os
from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_env_file() -> str:
    """
    Determine which .env file to load based on APP_ENV.

    Returns:
        Path to the .env file to load
    """
    app_env = os.getenv("APP_ENV", "development")
    base_dir = Path(__file__).parent.parent.parent  # repository root

    if app_env == "test":
        env_file = base_dir / ".env.test"
        if env_file.exists():
            return str(env_file)

    if app_env == "production":
        env_file = base_dir / ".env.production"
        if env_file.exists():
            return str(env_file)

    return str(base_dir / ".env")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=get_env_file(),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "cloudcost"
    APP_ENV: str = "development"
    DEBUG: bool = False
    DEMO_MODE: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # Local state (user-scoped)
    DATA_DIR: Path = Path.home() / ".cloud-cost-cli"
    DATABASE_URL: str = ""
    ENCRYPTION_KEY_FILE: Path | None = None

    # Report cache
    REPORT_CACHE_DIR: Path | None = None
    REPORT_CACHE_MAX_ENTRIES: int = 10
    REPORT_CACHE_MAX_AGE_HOURS: int = 24

    # Scanning
    CHECK_TIMEOUT_SECONDS: float = 900.0  # 0 disables the per-check bound
    AWS_DEFAULT_REGION: str = "us-east-1"
    GCP_DEFAULT_REGION: str = "us-central1"
    AWS_CONNECT_TIMEOUT: int = 60
    AWS_READ_TIMEOUT: int = 60
    AWS_MAX_ATTEMPTS: int = 3
    AZURE_CONNECTION_TIMEOUT: int = 60
    AZURE_READ_TIMEOUT: int = 120
    GCP_CALL_TIMEOUT: float = 120.0

    # Redis / Celery
    REDIS_URL: str = "redis://localhost:6379/0"
    CELERY_BROKER_URL: str = ""
    CELERY_RESULT_BACKEND: str = ""
    EVENTS_CHANNEL: str = "cloudcost:scan-events"

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and validate the log level name."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid LOG_LEVEL: {v}")
        return level

    @field_validator("CHECK_TIMEOUT_SECONDS")
    @classmethod
    def validate_check_timeout(cls, v: float) -> float:
        """Reject negative timeouts."""
        if v < 0:
            raise ValueError("CHECK_TIMEOUT_SECONDS must be >= 0")
        return v

    @model_validator(mode="after")
    def fill_derived_paths(self) -> "Settings":
        """Derive file locations and broker URLs that were not set explicitly."""
        data_dir = Path(self.DATA_DIR).expanduser()
        self.DATA_DIR = data_dir
        if not self.DATABASE_URL:
            self.DATABASE_URL = f"sqlite+aiosqlite:///{data_dir / 'dashboard.db'}"
        if self.ENCRYPTION_KEY_FILE is None:
            self.ENCRYPTION_KEY_FILE = data_dir / "encryption.key"
        if self.REPORT_CACHE_DIR is None:
            self.REPORT_CACHE_DIR = data_dir / "scans"
        if not self.CELERY_BROKER_URL:
            self.CELERY_BROKER_URL = self.REDIS_URL
        if not self.CELERY_RESULT_BACKEND:
            self.CELERY_RESULT_BACKEND = self.REDIS_URL
        return self

    @property
    def check_timeout(self) -> float | None:
        """Per-check timeout in seconds, or None when disabled."""
        return self.CHECK_TIMEOUT_SECONDS or None


settings = Settings()
