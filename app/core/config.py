"""Application configuration via pydantic settings."""

from __future__ import annotations

import logging
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Typed configuration shared by the scheduler, notifier and tracker services."""

    app_env: str = Field("local", alias="APP_ENV")
    app_name: str = "CarePill"

    database_url: str = Field("sqlite:///./carepill.db", alias="DATABASE_URL")
    database_echo: bool = Field(False, alias="DATABASE_ECHO")

    # Wall clock used to compare "now" with session schedules.
    timezone: str = Field("UTC", alias="TIMEZONE")
    missed_dose_threshold_minutes: int = Field(5, ge=0, alias="MISSED_DOSE_THRESHOLD_MINUTES")
    missed_dose_window_minutes: int = Field(5, ge=1, alias="MISSED_DOSE_WINDOW_MINUTES")

    resend_api_key: str | None = Field(default=None, alias="RESEND_API_KEY")
    resend_api_url: str = Field("https://api.resend.com", alias="RESEND_API_URL")
    email_from: str = Field("CarePill <onboarding@resend.dev>", alias="EMAIL_FROM")

    twilio_account_sid: str | None = Field(default=None, alias="TWILIO_ACCOUNT_SID")
    twilio_auth_token: str | None = Field(default=None, alias="TWILIO_AUTH_TOKEN")
    twilio_phone_number: str | None = Field(default=None, alias="TWILIO_PHONE_NUMBER")
    twilio_api_url: str = Field("https://api.twilio.com", alias="TWILIO_API_URL")
    sms_enabled: bool = Field(True, alias="SMS_ENABLED")

    delivery_timeout_seconds: float = Field(10.0, gt=0, alias="DELIVERY_TIMEOUT_SECONDS")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_format: str = Field(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s", alias="LOG_FORMAT"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
    )

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone: {value}") from exc
        return value

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        return value.strip().upper()

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


@lru_cache()
def get_settings() -> Settings:
    """Return the cached settings instance."""
    return Settings()


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format=settings.log_format,
    )
