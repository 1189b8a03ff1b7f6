"""Configuration management using pydantic-settings."""

import logging
import re

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

WEEKDAYS = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)

TIME_OF_DAY_PATTERN = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    APP_NAME: str = "Pulse Check-in"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./pulse_checkin.db"

    # Slack
    SLACK_BOT_TOKEN: str = ""  # xoxb-...
    SLACK_SIGNING_SECRET: str = ""
    SLACK_APP_TOKEN: str = ""  # xapp-... (for socket mode, optional)
    SLACK_WORKSPACE_ID: str = "default"
    SLACK_SEND_RETRIES: int = 3  # Attempts per outbound message before giving up

    # Users
    DEFAULT_TIMEZONE: str = "America/New_York"  # Used when Slack has no tz for a user

    # Scheduler
    SCHEDULER_TICK_MINUTES: int = 10
    TIME_MATCH_TOLERANCE_MINUTES: int = 5
    SCHEDULER_CONCURRENCY: int = 10  # Max users evaluated at once within a tick

    # Sessions
    SESSION_EXPIRY_HOURS: int = 24  # Idle in-progress check-ins are dropped after this

    # Defaults for a freshly created workspace config
    DEFAULT_CHECK_IN_DAY: str = "thursday"
    DEFAULT_CHECK_IN_TIME: str = "14:00"
    DEFAULT_REMINDER_TIMES: str = "09:00,16:00"  # Comma-separated, sent the day after check-in

    # Admin API
    ADMIN_API_TOKEN: str = ""

    @property
    def default_reminder_time_list(self) -> list[str]:
        """Get default reminder times as a list."""
        if not self.DEFAULT_REMINDER_TIMES:
            return []
        return [t.strip() for t in self.DEFAULT_REMINDER_TIMES.split(",") if t.strip()]

    @model_validator(mode="after")
    def check_schedule_settings(self) -> "Settings":
        """Validate schedule defaults and warn about risky combinations."""
        if self.DEFAULT_CHECK_IN_DAY.lower() not in WEEKDAYS:
            raise ValueError(
                f"DEFAULT_CHECK_IN_DAY must be a day of the week, got {self.DEFAULT_CHECK_IN_DAY!r}"
            )
        for value in [self.DEFAULT_CHECK_IN_TIME, *self.default_reminder_time_list]:
            if not TIME_OF_DAY_PATTERN.match(value):
                raise ValueError(f"Invalid time format: {value}. Must be in HH:MM format.")

        if self.SCHEDULER_TICK_MINUTES < 2 * self.TIME_MATCH_TOLERANCE_MINUTES:
            logging.warning(
                "SCHEDULER_TICK_MINUTES=%s is shorter than twice the %s-minute match window; "
                "a check-in may be launched on two consecutive ticks",
                self.SCHEDULER_TICK_MINUTES,
                self.TIME_MATCH_TOLERANCE_MINUTES,
            )
        if not self.DEBUG and not self.ADMIN_API_TOKEN:
            logging.warning(
                "SECURITY WARNING: ADMIN_API_TOKEN is empty in non-debug mode; admin API is locked"
            )
        return self


settings = Settings()
