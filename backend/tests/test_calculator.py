"""Slot generation tests."""

import pytest

from app.services.availability import AvailabilityConfig, BusinessHours, generate_slots
from app.services.availability.config import minutes_to_time_str, time_str_to_minutes


HOURS = BusinessHours("08:00", "18:00")


def test_two_hour_duration_on_half_hour_grid(config: AvailabilityConfig) -> None:
    slots = generate_slots(HOURS, 2, config)

    assert slots[0] == "08:00"
    assert slots[-1] == "16:00"
    assert len(slots) == 17


def test_slots_strictly_ascending(config: AvailabilityConfig) -> None:
    for duration in (1, 1.5, 2, 4, 10):
        slots = generate_slots(HOURS, duration, config)
        minutes = [time_str_to_minutes(s) for s in slots]
        assert minutes == sorted(set(minutes))


def test_last_slot_ends_by_closing_time(config: AvailabilityConfig) -> None:
    slots = generate_slots(HOURS, 1.5, config)
    assert time_str_to_minutes(slots[-1]) + 90 <= time_str_to_minutes("18:00")
    assert slots[-1] == "16:30"


def test_hourly_grid_covers_business_day() -> None:
    config = AvailabilityConfig(slot_step_minutes=60)
    assert generate_slots(HOURS, 2, config) == [
        "08:00", "09:00", "10:00", "11:00", "12:00",
        "13:00", "14:00", "15:00", "16:00",
    ]


def test_duration_longer_than_business_hours_yields_nothing(config: AvailabilityConfig) -> None:
    assert generate_slots(HOURS, 11, config) == []
    assert generate_slots(HOURS, 0, config) == []


def test_full_day_duration_has_single_slot(config: AvailabilityConfig) -> None:
    assert generate_slots(HOURS, 10, config) == ["08:00"]


def test_generation_is_deterministic(config: AvailabilityConfig) -> None:
    assert generate_slots(HOURS, 3, config) == generate_slots(HOURS, 3, config)


def test_time_helpers() -> None:
    assert time_str_to_minutes("08:30") == 510
    assert minutes_to_time_str(510) == "08:30"
    assert minutes_to_time_str(0) == "00:00"


def test_config_rejects_unsupported_step() -> None:
    with pytest.raises(ValueError):
        AvailabilityConfig(slot_step_minutes=45)


def test_config_rejects_inverted_business_hours() -> None:
    with pytest.raises(ValueError):
        AvailabilityConfig(business_hours=BusinessHours("18:00", "08:00"))
