from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_SQLITE_PATH = BASE_DIR / "trainerdesk.db"
DEFAULT_SQLITE_URL = f"sqlite:///{DEFAULT_SQLITE_PATH}"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=BASE_DIR / ".env", env_prefix="TRAINERDESK_", case_sensitive=False)

    api_token: str = Field(default="dev-token", description="Bearer token required for all API calls")
    cron_secret: str = Field(default="dev-cron-secret", description="Bearer token for scheduled job triggers")
    database_url: str = Field(default=DEFAULT_SQLITE_URL, description="SQLAlchemy database URL")
    # Comma-separated values or '*' for all
    cors_origins: str = Field(default="*")
    environment: str = Field(default="development")
    log_level: str = Field(default="INFO")

    # External calendar
    calendar_provider: str = Field(default="fake", description="fake|google")
    google_client_id: Optional[str] = Field(default=None)
    google_client_secret: Optional[str] = Field(default=None)
    google_calendar_api_base: str = Field(default="https://www.googleapis.com/calendar/v3")
    google_token_url: str = Field(default="https://oauth2.googleapis.com/token")
    calendar_pull_window_months: int = Field(default=3)
    client_sync_lookback_days: int = Field(default=30)

    # Invoice email
    email_provider: str = Field(default="fake", description="fake|sendgrid")
    sendgrid_api_key: Optional[str] = Field(default=None)
    email_from: str = Field(default="invoices@trainerdesk.local")

    default_invoice_due_days: int = Field(default=30)

    # Manual calendar sync throttling (per trainer per minute)
    sync_rate_limit_enabled: bool = Field(default=False)
    sync_rate_limit_per_minute: int = Field(default=6)

    @property
    def cors_origins_list(self) -> List[str]:
        s = (self.cors_origins or "").strip()
        if not s or s == "*":
            return ["*"]
        return [part.strip() for part in s.split(",") if part.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
