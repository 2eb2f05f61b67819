# backend/app/schemas/availability.py
"""
Pydantic schemas for availability API.
"""

from datetime import date
from pydantic import BaseModel, Field


class TimeSlotResponse(BaseModel):
    """A candidate start time and whether it can be booked."""
    time: str  # "HH:MM"
    available: bool
    reason: str | None = None
    conflicting_bookings: int = 0

    model_config = {"from_attributes": True}


class AvailabilitySummaryResponse(BaseModel):
    total_slots: int
    available_slots: int
    booked_slots: int
    availability_percentage: float

    model_config = {"from_attributes": True}


class ServiceInfoResponse(BaseModel):
    id: str
    name: str
    base_price: float
    price_per_hour: float

    model_config = {"from_attributes": True}


class AvailabilityResponse(BaseModel):
    """Fine-grained availability of one date."""
    date: date
    service_id: str | None = None
    duration: float = Field(description="Requested duration in hours")
    slots: list[TimeSlotResponse]
    summary: AvailabilitySummaryResponse
    service_info: ServiceInfoResponse | None = None
    next_available_slot: str | None = None

    model_config = {"from_attributes": True}


class AvailabilityEnvelope(BaseModel):
    success: bool = True
    data: AvailabilityResponse
    cached: bool = False


class DateAvailabilityResponse(BaseModel):
    """Calendar-level availability of one date."""
    date: date
    available: bool
    available_slots: int
    total_slots: int
    availability_percentage: float
    reason: str | None = None

    model_config = {"from_attributes": True}


class BulkAvailabilityRequest(BaseModel):
    dates: list[str] = Field(description="Dates in YYYY-MM-DD format")
    service_id: str | None = None
    duration: float | None = Field(None, description="Duration in hours")


class BulkPerformance(BaseModel):
    total_dates: int
    valid_dates: int
    past_dates: int


class BulkAvailabilityEnvelope(BaseModel):
    success: bool = True
    data: list[DateAvailabilityResponse]
    performance: BulkPerformance


class InvalidateRangeRequest(BaseModel):
    start_date: str
    end_date: str
    service_id: str | None = None


class PreloadResponse(BaseModel):
    service_id: str | None = None
    duration: float
    requested_days: int
    cached_days: int
    days: list[DateAvailabilityResponse]


class CacheStatsResponse(BaseModel):
    size: int
    keys: list[str]
