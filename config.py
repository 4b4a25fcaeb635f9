"""
Configuration management for PillMind
"""

from typing import Optional
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "PillMind"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENV: str = "development"

    # API
    API_PREFIX: str = "/api/v1"
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database
    DATABASE_URL: str = "sqlite:///./pillmind.db"
    DATABASE_ECHO: bool = False

    # Dose engine
    DEFAULT_TIMEZONE: str = "UTC"
    DOSE_HORIZON_DAYS: int = 14  # rolling horizon of the daily generation job
    SCHEDULE_REGENERATION_DAYS: int = 28  # horizon used after a schedule edit
    MAX_GENERATION_DAYS: int = 365
    NOTIFICATION_WINDOW_MINUTES: int = 2
    SCHEDULE_MAX_PAST_DAYS: int = 7

    # Push notifications (Web Push / VAPID)
    VAPID_PUBLIC_KEY: Optional[str] = None
    VAPID_PRIVATE_KEY: Optional[str] = None
    VAPID_SUBJECT: str = "mailto:support@pillmind.app"
    PUSH_TTL_SECONDS: int = 60 * 60 * 24

    # Email notifications (Maileroo template API)
    MAILEROO_API_KEY: Optional[str] = None
    MAILEROO_API_URL: str = "https://smtp.maileroo.com/api/v2/emails/template"
    MAILEROO_FROM_ADDRESS: Optional[str] = None
    MAILEROO_FROM_NAME: str = "PillMind"
    MAILEROO_TEMPLATE_REMINDER_ID: Optional[int] = None
    MAILEROO_TEMPLATE_LOW_STOCK_ID: Optional[int] = None
    APP_URL: str = "http://localhost:3000/home"

    # Periodic trigger authentication
    CRON_SECRET: Optional[str] = None

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
