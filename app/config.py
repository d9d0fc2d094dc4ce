from pathlib import Path
from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Database settings
    DATABASE_URL: str = "postgresql://localhost:5432/cleaning_notifier"

    # Redis settings (optional - enables the arq-backed job queue)
    REDIS_URL: str | None = None

    # Time settings
    TIMEZONE: str = "America/Sao_Paulo"
    DEFAULT_CHECKOUT_TIME: str = "11:00"
    DEFAULT_CHECKIN_TIME: str = "15:00"

    # Calendar fetching
    CALENDAR_FETCH_TIMEOUT_SECONDS: float = 20.0
    CALENDAR_MAX_CONCURRENT_FETCHES: int = 5

    # Dispatch
    DISPATCH_TIMEOUT_SECONDS: float = 30.0

    # Retention
    PROCESSED_EVENT_RETENTION_DAYS: int = 90
    MESSAGE_LOG_RETENTION_DAYS: int = 90
    JOB_RUN_RETENTION_DAYS: int = 180

    # Scheduler
    SCHEDULER_ENABLED: bool = True
    JOB_SCHEDULE_OVERRIDES: dict[str, str] = {}

    # WhatsApp Cloud API settings
    WHATSAPP_API_URL: str = "https://graph.facebook.com/v19.0"
    WHATSAPP_PHONE_NUMBER_ID: str | None = None
    WHATSAPP_ACCESS_TOKEN: str | None = None

    # Twilio SMS settings
    TWILIO_ACCOUNT_SID: str | None = None
    TWILIO_AUTH_TOKEN: str | None = None
    TWILIO_FROM_NUMBER: str | None = None

    # Email settings
    RESEND_API_KEY: str | None = None
    EMAIL_FROM: str = "Limpezas <noreply@example.com>"

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 10
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def tz(self) -> ZoneInfo:
        """Configured time zone used for every date computation."""
        return ZoneInfo(self.TIMEZONE)

    def whatsapp_configured(self) -> bool:
        return bool(self.WHATSAPP_PHONE_NUMBER_ID and self.WHATSAPP_ACCESS_TOKEN)

    def sms_configured(self) -> bool:
        return bool(self.TWILIO_ACCOUNT_SID and self.TWILIO_AUTH_TOKEN and self.TWILIO_FROM_NUMBER)

    def email_configured(self) -> bool:
        return bool(self.RESEND_API_KEY)

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            config.update(
                {
                    "min_size": 1,
                    "max_size": 4,
                    "timeout": 15.0,
                }
            )

        return config


settings = Settings()
