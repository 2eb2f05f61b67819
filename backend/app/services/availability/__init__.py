# backend/app/services/availability/__init__.py
"""
Availability & conflict resolution engine.

Slot generation and conflict resolution are pure; the cache is the single
shared mutable resource; the invalidation bus keeps it in step with booking
mutations; the coalescer and preloader sit in front of it.
"""

from .config import AvailabilityConfig, BusinessHours, get_availability_config
from .domain import (
    AvailabilityQuery,
    AvailabilityResult,
    AvailabilitySummary,
    BookingInterval,
    DateAvailability,
    ServiceInfo,
    TimeSlot,
)
from .errors import AvailabilityError, DataSourceUnavailable, InvalidQuery, PreloadFailure
from .calculator import generate_slots
from .resolver import resolve, next_available_slot
from .cache import AvailabilityCache, Fingerprint, cache_sweeper_loop
from .store import BookingSource, SqlBookingSource
from .invalidator import (
    InvalidationBus,
    RedisInvalidationBroadcaster,
    cache_invalidator,
    invalidation_listener_loop,
)
from .availability import AvailabilityEngine, parse_date
from .coalescer import QueryCoalescer
from .preloader import BulkPreloader

__all__ = [
    "AvailabilityConfig",
    "BusinessHours",
    "get_availability_config",
    "AvailabilityQuery",
    "AvailabilityResult",
    "AvailabilitySummary",
    "BookingInterval",
    "DateAvailability",
    "ServiceInfo",
    "TimeSlot",
    "AvailabilityError",
    "DataSourceUnavailable",
    "InvalidQuery",
    "PreloadFailure",
    "generate_slots",
    "resolve",
    "next_available_slot",
    "AvailabilityCache",
    "Fingerprint",
    "cache_sweeper_loop",
    "BookingSource",
    "SqlBookingSource",
    "InvalidationBus",
    "RedisInvalidationBroadcaster",
    "cache_invalidator",
    "invalidation_listener_loop",
    "AvailabilityEngine",
    "parse_date",
    "QueryCoalescer",
    "BulkPreloader",
]
