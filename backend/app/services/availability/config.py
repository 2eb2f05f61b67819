# backend/app/services/availability/config.py
"""
Engine configuration for availability calculation.
"""

from dataclasses import dataclass
from functools import lru_cache

from ...config import settings


def time_str_to_minutes(value: str) -> int:
    """Convert "HH:MM" to minutes since midnight."""
    hour, minute = value.strip().split(":")
    return int(hour) * 60 + int(minute)


def minutes_to_time_str(minutes: int) -> str:
    """Convert minutes since midnight to "HH:MM"."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


@dataclass(frozen=True)
class BusinessHours:
    """Daily working window, uniform across dates."""
    start: str = "08:00"
    end: str = "18:00"

    @property
    def start_minutes(self) -> int:
        return time_str_to_minutes(self.start)

    @property
    def end_minutes(self) -> int:
        return time_str_to_minutes(self.end)

    @property
    def length_minutes(self) -> int:
        return self.end_minutes - self.start_minutes


@dataclass(frozen=True)
class AvailabilityConfig:
    """
    Configuration for the availability engine.

    Attributes:
        business_hours: Working window used to generate candidate slots
        slot_step_minutes: Candidate granularity in minutes (15/30/60)
        cache_ttl_seconds: Lifetime of a cached availability result
        sweep_interval_seconds: Interval of the background expiry sweep
        debounce_seconds: Coalescer debounce window
        preload_days: Default look-ahead for bulk preloading
        max_bulk_dates: Maximum number of dates in one bulk query
        max_advance_days: How far ahead of today a date may be queried
        min_duration_hours / max_duration_hours: Accepted duration bounds
        default_duration_hours: Duration used when a query omits it
    """
    business_hours: BusinessHours = BusinessHours()
    slot_step_minutes: int = 30  # 15 / 30 / 60
    cache_ttl_seconds: float = 300
    sweep_interval_seconds: float = 60
    debounce_seconds: float = 0.3
    preload_days: int = 14
    max_bulk_dates: int = 30
    max_advance_days: int = 90
    min_duration_hours: float = 1
    max_duration_hours: float = 12
    default_duration_hours: float = 2

    def __post_init__(self):
        """Validate configuration."""
        if self.slot_step_minutes not in (15, 30, 60):
            raise ValueError(f"slot_step_minutes must be 15, 30, or 60, got {self.slot_step_minutes}")
        if self.business_hours.length_minutes <= 0:
            raise ValueError(
                f"business hours end ({self.business_hours.end}) must be after "
                f"start ({self.business_hours.start})"
            )
        if self.cache_ttl_seconds <= 0:
            raise ValueError(f"cache_ttl_seconds must be positive, got {self.cache_ttl_seconds}")
        if self.min_duration_hours > self.max_duration_hours:
            raise ValueError("min_duration_hours must not exceed max_duration_hours")

    @property
    def business_hours_length(self) -> float:
        """Length of the business-hours window in hours."""
        return self.business_hours.length_minutes / 60


@lru_cache
def get_availability_config() -> AvailabilityConfig:
    """Get availability configuration (singleton, built from settings)."""
    return AvailabilityConfig(
        business_hours=BusinessHours(
            start=settings.business_hours_start,
            end=settings.business_hours_end,
        ),
        slot_step_minutes=settings.slot_step_minutes,
        cache_ttl_seconds=settings.availability_cache_ttl_seconds,
        sweep_interval_seconds=settings.availability_sweep_interval_seconds,
        debounce_seconds=settings.availability_debounce_ms / 1000,
        preload_days=settings.availability_preload_days,
        max_bulk_dates=settings.availability_max_bulk_dates,
        max_advance_days=settings.availability_max_advance_days,
        min_duration_hours=settings.min_duration_hours,
        max_duration_hours=settings.max_duration_hours,
        default_duration_hours=settings.default_duration_hours,
    )
