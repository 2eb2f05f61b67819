# backend/app/config.py

from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[2]  # repository root


class Settings(BaseSettings):
    database_url: str = "sqlite:///./booking.db"
    redis_url: str | None = None

    # Business hours (uniform across dates)
    business_hours_start: str = "08:00"
    business_hours_end: str = "18:00"
    slot_step_minutes: int = 30

    # Availability cache / coalescing / preloading
    availability_cache_ttl_seconds: int = 300
    availability_sweep_interval_seconds: int = 60
    availability_debounce_ms: int = 300
    availability_preload_days: int = 14
    availability_max_bulk_dates: int = 30
    availability_max_advance_days: int = 90

    min_duration_hours: float = 1
    max_duration_hours: float = 12
    default_duration_hours: float = 2

    invalidation_channel: str = "availability:invalidate"

    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        extra="ignore",
    )

    @property
    def resolved_database_url(self) -> str:
        url = self.database_url
        if url.startswith("sqlite:///./"):
            # Relative SQLite path is resolved against the repository root
            relative_path = url.replace("sqlite:///./", "")
            absolute_path = BASE_DIR / relative_path
            return f"sqlite:///{absolute_path}"
        return url


settings = Settings()
