# backend/app/services/availability/calculator.py
"""
Slot generation: business hours + duration → candidate start times.

Candidates are laid on a fixed grid (slot_step_minutes) starting at the
opening time; only start times whose booking would end by closing time are
produced. Output is ascending and stable, so the first available slot of a
resolved sequence is the "next available slot".

Pure: no I/O, no shared state.
"""

from math import ceil

from .config import AvailabilityConfig, BusinessHours, get_availability_config, minutes_to_time_str


def duration_to_minutes(duration: float) -> int:
    """Convert a duration in hours to whole minutes (rounded up)."""
    return ceil(round(duration * 60, 6))


def generate_slots(
    business_hours: BusinessHours,
    duration: float,
    config: AvailabilityConfig | None = None,
) -> list[str]:
    """
    Generate candidate start times for a booking of `duration` hours.

    Returns:
        Ascending list of "HH:MM" strings. Empty list when the duration does
        not fit into the business-hours window.
    """
    config = config or get_availability_config()
    step = config.slot_step_minutes
    duration_min = duration_to_minutes(duration)
    if duration_min <= 0:
        return []

    start_min = business_hours.start_minutes
    end_min = business_hours.end_minutes

    slots: list[str] = []
    t = start_min
    while t + duration_min <= end_min:
        slots.append(minutes_to_time_str(t))
        t += step

    return slots
