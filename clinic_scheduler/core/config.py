from datetime import time
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve .env from project root so it loads regardless of cwd
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=(str(_ENV_FILE), ".env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = "sqlite+aiosqlite:///./clinic_scheduler.db"
    database_ssl: bool = False
    create_tables_on_startup: bool = False

    # CORS
    cors_origins: str = "http://localhost:3000"

    # Appointment business rules
    min_duration_minutes: int = 15
    max_duration_minutes: int = 240  # also sizes the conflict window
    default_duration_minutes: int = 30
    notes_max_length: int = 500

    # Availability
    default_granularity_minutes: int = 30
    default_day_start: time = time(9, 0)
    default_day_end: time = time(17, 0)  # exclusive, so last slot ends at 17:00

    # Seconds to wait for the per-doctor booking lock / DB row lock
    transaction_timeout_seconds: float = 5.0

    # Env
    env: str = "development"

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


settings = Settings()
