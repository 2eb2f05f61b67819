# backend/app/services/availability/resolver.py
"""
Conflict resolution: candidate slots × existing bookings → AvailabilityResult.

Each slot occupies the half-open interval [start, start + duration).
A booking [b.start, b.end) conflicts with a slot when
    slot.start < b.end and b.start < slot.end
so touching endpoints never conflict.

Pure: bookings are passed in, nothing is fetched or cached here.
"""

from collections.abc import Iterable, Sequence
from datetime import date

from .calculator import duration_to_minutes
from .config import time_str_to_minutes
from .domain import (
    BOOKED_REASON,
    NO_SLOTS_REASON,
    AvailabilityResult,
    AvailabilitySummary,
    BookingInterval,
    DateAvailability,
    ServiceInfo,
    TimeSlot,
)

CANCELLED_STATUSES = frozenset({"cancelled"})


def relevant_bookings(
    bookings: Iterable[BookingInterval],
    target_date: date,
    service_id: str | None = None,
    exclude_booking_id: str | None = None,
) -> list[BookingInterval]:
    """
    Filter bookings down to the conflict set of one query.

    Drops cancelled bookings, bookings of other dates / services and the
    booking being edited (a booking never conflicts with itself).
    """
    result = []
    for booking in bookings:
        if booking.booking_date != target_date:
            continue
        if booking.status in CANCELLED_STATUSES:
            continue
        if exclude_booking_id is not None and booking.id == str(exclude_booking_id):
            continue
        if (
            service_id is not None
            and booking.service_id is not None
            and booking.service_id != str(service_id)
        ):
            continue
        result.append(booking)
    return result


def count_conflicts(
    slot_start: int,
    slot_end: int,
    bookings: Sequence[tuple[int, int]],
) -> int:
    """Count booking intervals (in minutes) overlapping [slot_start, slot_end)."""
    return sum(1 for b_start, b_end in bookings if slot_start < b_end and b_start < slot_end)


def summarize(slots: Sequence[TimeSlot]) -> AvailabilitySummary:
    """Aggregate slot counts in a single pass."""
    total = 0
    available = 0
    for slot in slots:
        total += 1
        if slot.available:
            available += 1

    percentage = (available / total * 100) if total else 0.0
    return AvailabilitySummary(
        total_slots=total,
        available_slots=available,
        booked_slots=total - available,
        availability_percentage=percentage,
    )


def resolve(
    candidate_slots: Sequence[str],
    existing_bookings: Iterable[BookingInterval],
    duration: float,
    *,
    target_date: date,
    service_id: str | None = None,
    exclude_booking_id: str | None = None,
    service_info: ServiceInfo | None = None,
) -> AvailabilityResult:
    """
    Mark each candidate slot available or blocked.

    Returns:
        AvailabilityResult with slots in candidate order and its summary.
    """
    conflict_set = relevant_bookings(
        existing_bookings, target_date, service_id, exclude_booking_id
    )
    intervals = [
        (time_str_to_minutes(b.start), time_str_to_minutes(b.end))
        for b in conflict_set
    ]
    duration_min = duration_to_minutes(duration)

    slots: list[TimeSlot] = []
    for time_str in candidate_slots:
        start = time_str_to_minutes(time_str)
        conflicts = count_conflicts(start, start + duration_min, intervals)
        if conflicts:
            slots.append(TimeSlot(
                time=time_str,
                available=False,
                reason=BOOKED_REASON,
                conflicting_bookings=conflicts,
            ))
        else:
            slots.append(TimeSlot(time=time_str, available=True))

    return AvailabilityResult(
        date=target_date,
        service_id=service_id,
        duration=duration,
        slots=tuple(slots),
        summary=summarize(slots),
        service_info=service_info,
    )


def to_date_availability(result: AvailabilityResult) -> DateAvailability:
    """Collapse a fine-grained result into its calendar-level form."""
    summary = result.summary
    available = summary.available_slots > 0
    return DateAvailability(
        date=result.date,
        available=available,
        available_slots=summary.available_slots,
        total_slots=summary.total_slots,
        availability_percentage=summary.availability_percentage,
        reason=None if available else NO_SLOTS_REASON,
    )


# ── Slot helpers ─────────────────────────────────────────────────────────


def next_available_slot(result: AvailabilityResult) -> TimeSlot | None:
    """First available slot in generator order, or None."""
    return next((slot for slot in result.slots if slot.available), None)


def available_slots(result: AvailabilityResult) -> list[TimeSlot]:
    return [slot for slot in result.slots if slot.available]


def unavailable_slots(result: AvailabilityResult) -> list[TimeSlot]:
    return [slot for slot in result.slots if not slot.available]


def is_time_slot_available(result: AvailabilityResult, time_str: str) -> bool:
    slot = next((s for s in result.slots if s.time == time_str), None)
    return slot is not None and slot.available
