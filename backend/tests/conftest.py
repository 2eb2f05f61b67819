"""Test fixtures for the availability engine."""
from __future__ import annotations

import threading
import time
from collections import defaultdict
from datetime import date

import pytest

from app.services.availability import (
    AvailabilityCache,
    AvailabilityConfig,
    AvailabilityEngine,
    BookingInterval,
    BusinessHours,
    DataSourceUnavailable,
    InvalidationBus,
    InvalidQuery,
    ServiceInfo,
    cache_invalidator,
)

TODAY = date(2024, 6, 9)
TARGET = date(2024, 6, 10)


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeBookingSource:
    """In-memory BookingSource with failure injection."""

    def __init__(self, bookings=(), services=None):
        self.bookings: list[BookingInterval] = list(bookings)
        self.services: dict[str, ServiceInfo] = services or {}
        self.calls: list[list[date]] = []
        self.fail_all = False
        self.fail_dates: set[date] = set()
        self.delay = 0.0
        self.numeric_ids = False
        self._lock = threading.Lock()

    def add(self, booking: BookingInterval) -> None:
        self.bookings.append(booking)

    def bookings_for_dates(self, dates, service_id=None, exclude_booking_id=None):
        dates = list(dates)
        with self._lock:
            self.calls.append(dates)
        if self.delay:
            time.sleep(self.delay)
        if self.fail_all or self.fail_dates.intersection(dates):
            raise DataSourceUnavailable("Failed to fetch bookings")

        grouped = defaultdict(list)
        for booking in self.bookings:
            if booking.booking_date not in dates or booking.status == "cancelled":
                continue
            if exclude_booking_id is not None and booking.id == exclude_booking_id:
                continue
            if service_id is not None and booking.service_id != service_id:
                continue
            grouped[booking.booking_date].append(booking)
        return grouped

    def validate_id(self, value, field):
        if self.numeric_ids and not str(value).isdigit():
            raise InvalidQuery(f"{field} must be an integer id, got {value!r}")

    def service_info(self, service_id):
        if self.fail_all:
            raise DataSourceUnavailable("Failed to fetch service")
        return self.services.get(service_id)


def booking(
    booking_id: str,
    start: str,
    end: str,
    booking_date: date = TARGET,
    service_id: str | None = "1",
    status: str = "confirmed",
) -> BookingInterval:
    return BookingInterval(
        id=booking_id,
        booking_date=booking_date,
        start=start,
        end=end,
        status=status,
        service_id=service_id,
    )


@pytest.fixture()
def config() -> AvailabilityConfig:
    return AvailabilityConfig(
        business_hours=BusinessHours("08:00", "18:00"),
        slot_step_minutes=30,
        cache_ttl_seconds=300,
        debounce_seconds=0.02,
        preload_days=14,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def cache(clock: FakeClock) -> AvailabilityCache:
    return AvailabilityCache(ttl_seconds=300, clock=clock)


@pytest.fixture()
def source() -> FakeBookingSource:
    return FakeBookingSource(
        services={"1": ServiceInfo(id="1", name="Lawn care", base_price=50.0, price_per_hour=25.0)},
    )


@pytest.fixture()
def bus(cache: AvailabilityCache) -> InvalidationBus:
    bus = InvalidationBus()
    bus.register(cache_invalidator(cache))
    return bus


@pytest.fixture()
def engine(
    source: FakeBookingSource,
    cache: AvailabilityCache,
    bus: InvalidationBus,
    config: AvailabilityConfig,
) -> AvailabilityEngine:
    return AvailabilityEngine(source, cache, bus=bus, config=config, today=lambda: TODAY)
