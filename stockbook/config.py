"""Stockbook configuration via pydantic-settings."""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # GitHub storage
    GITHUB_API_URL: str = "https://api.github.com"
    GITHUB_API_VERSION: str = "2022-11-28"
    GITHUB_OWNER: str = ""
    GITHUB_REPO: str = ""
    GITHUB_TOKEN: str = ""
    DATA_FILE: str = "data.json"

    # Remote client behaviour
    REQUEST_TIMEOUT: float = 30.0  # seconds
    MAX_RETRIES: int = 3
    RETRY_BASE_DELAY: float = 1.0  # seconds, doubled on every attempt
    RETRY_MAX_JITTER: float = 1.0  # seconds

    # Local files
    CREDENTIALS_PATH: str = "./data/credentials.json"
    BACKUP_DIR: str = "./data/backups"

    # Token encryption
    ENCRYPTION_APP_SALT: str = "stockbook-app-v1"
    PBKDF2_ITERATIONS: int = 100_000

    # Timezone
    TIMEZONE: str = "UTC"

    # Business rules
    MIN_CASH_RESERVE: float = 2000.0
    LOW_STOCK_THRESHOLD: int = 5

    # Environment
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
