from datetime import timedelta, timezone
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Shared
    APP_ENV: str = "dev"
    APP_PORT: int = 3000
    APP_VERSION: str = "1.1.0"
    APP_UTC_OFFSET_HOURS: int = 8

    # Store
    STORE_BACKEND: str = "sql"  # sql|memory
    DATABASE_URL: Optional[str] = None

    # LINE Messaging API
    LINE_CHANNEL_SECRET: Optional[str] = None
    LINE_CHANNEL_ACCESS_TOKEN: Optional[str] = None
    LINE_API_BASE: str = "https://api.line.me/v2/bot"
    LINE_REQUEST_TIMEOUT_SECONDS: int = 10

    # Data access: cache and retry
    CACHE_TTL_SECONDS: float = 60.0
    CACHE_MAX_ENTRIES: int = 100
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_INITIAL_DELAY_SECONDS: float = 1.0
    RETRY_MAX_DELAY_SECONDS: float = 10.0
    RETRY_BACKOFF_MULTIPLIER: float = 2.0
    HEALTHCHECK_MAX_ATTEMPTS: int = 5

    # Chat behaviour
    TASK_LIST_SCOPE: str = "today"  # today|all
    MOOD_OVERWHELMED_THRESHOLD: int = 5
    DEFAULT_DISPLAY_NAME: str = "主人"

    # Worker
    REMINDER_POLL_SECONDS: int = 60

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def local_timezone(self) -> timezone:
        return timezone(timedelta(hours=self.APP_UTC_OFFSET_HOURS))

    @property
    def list_today_only(self) -> bool:
        return (self.TASK_LIST_SCOPE or "today").strip().lower() != "all"

settings = Settings()
