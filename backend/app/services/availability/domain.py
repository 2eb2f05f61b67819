# backend/app/services/availability/domain.py
"""
Data model of the availability engine.

All values are frozen dataclasses: results are produced once per query and
shared through the cache, never mutated in place.
"""

from dataclasses import dataclass, field
from datetime import date


BOOKED_REASON = "Time slot already booked"
PAST_DATE_REASON = "Past date"
NO_SLOTS_REASON = "Fully booked"


@dataclass(frozen=True)
class BookingInterval:
    """An existing booking as seen by the conflict resolver."""
    id: str
    booking_date: date
    start: str  # "HH:MM"
    end: str    # "HH:MM"
    status: str = "pending"
    service_id: str | None = None


@dataclass(frozen=True)
class ServiceInfo:
    """Snapshot of service pricing attached to a result."""
    id: str
    name: str
    base_price: float
    price_per_hour: float


@dataclass(frozen=True)
class TimeSlot:
    time: str  # "HH:MM"
    available: bool
    reason: str | None = None
    conflicting_bookings: int = 0


@dataclass(frozen=True)
class AvailabilitySummary:
    total_slots: int
    available_slots: int
    booked_slots: int
    availability_percentage: float


@dataclass(frozen=True)
class AvailabilityResult:
    """Fine-grained availability of one date."""
    date: date
    service_id: str | None
    duration: float
    slots: tuple[TimeSlot, ...]
    summary: AvailabilitySummary
    service_info: ServiceInfo | None = None


@dataclass(frozen=True)
class DateAvailability:
    """Coarse, calendar-level availability of one date."""
    date: date
    available: bool
    available_slots: int
    total_slots: int
    availability_percentage: float
    reason: str | None = None


@dataclass(frozen=True)
class AvailabilityQuery:
    """Parameters of a fine-grained query."""
    date: date
    service_id: str | None = None
    duration: float = 2
    exclude_booking_id: str | None = None
    skip_cache: bool = field(default=False, compare=False)
