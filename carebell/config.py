from __future__ import annotations
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # === Telegram ===
    BOT_TOKEN: str = ""

    # === Storage / DB ===
    STORE_BACKEND: str = Field("memory", description="memory | sql")
    DATABASE_URL: Optional[str] = None
    POSTGRES_DSN: Optional[str] = None

    REDIS_DSN: Optional[str] = None  # FSM storage for the bot; memory when empty

    INIT_DB_ON_START: bool = False
    SQL_ECHO: bool = False

    # === Notifications ===
    NOTIFY_TRANSPORT: str = Field("log", description="log | telegram")
    NOTIFY_CAREGIVER_ON_DONE: bool = True
    NOTIFY_RECIPIENT_ON_CREATE: bool = True
    DISPATCH_MAX_ATTEMPTS: int = 3
    DISPATCH_RETRY_DELAY_SECONDS: float = 2.0

    # === Scheduler / reminders ===
    SCHEDULER_TZ: str = "UTC"
    RECONCILE_INTERVAL_SECONDS: int = 60
    MAX_FOLLOW_UP_MINUTES: int = 240

    # === Web ===
    WEBAPP_HOST: str = "0.0.0.0"
    WEBAPP_PORT: int = 8080

    # === Logs ===
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")
    log_sql: str = Field(default="WARNING", alias="LOG_SQL")
    log_aiogram: str = Field(default="INFO", alias="LOG_AIOGRAM")
    log_apscheduler: str = Field(default="WARNING", alias="LOG_APSCHEDULER")

    @field_validator("STORE_BACKEND", "NOTIFY_TRANSPORT", mode="before")
    @classmethod
    def _v_lower(cls, v):
        return str(v or "").strip().lower()

    @field_validator("DISPATCH_MAX_ATTEMPTS", "MAX_FOLLOW_UP_MINUTES")
    @classmethod
    def _v_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    # ---- post-processing ----
    def model_post_init(self, __context) -> None:
        # DSN/URL compatibility
        if not self.DATABASE_URL and self.POSTGRES_DSN:
            self.DATABASE_URL = self.POSTGRES_DSN

        if self.STORE_BACKEND == "sql" and not self.DATABASE_URL:
            raise ValueError("STORE_BACKEND=sql, but DATABASE_URL is not set.")

        # the telegram transport needs a token
        if self.NOTIFY_TRANSPORT == "telegram" and not self.BOT_TOKEN:
            raise ValueError("NOTIFY_TRANSPORT=telegram, but BOT_TOKEN is not set.")

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )


settings = Settings()
