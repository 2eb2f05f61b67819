# backend/app/services/availability/availability.py
"""
Availability engine: the query side of the booking calendar.

Fine-grained path:
    validate → cache (single:*) → fetch bookings + service → generate → resolve → cache
Bulk path:
    validate → cache (bulk:*) → per-date index (day:*) → one batched fetch
    for the remaining dates → resolve each → cache day:* and bulk:*

compute() never writes the cache; lookup()/store() are separate so the
coalescer can drop a superseded computation without touching shared state.
"""

import logging
import math
from collections.abc import Callable, Iterable
from datetime import date, timedelta

from .cache import AvailabilityCache, Fingerprint
from .calculator import generate_slots
from .config import AvailabilityConfig, get_availability_config
from .domain import (
    PAST_DATE_REASON,
    AvailabilityQuery,
    AvailabilityResult,
    BookingInterval,
    DateAvailability,
)
from .errors import InvalidQuery
from .invalidator import InvalidationBus
from .resolver import resolve, to_date_availability
from .store import BookingSource

logger = logging.getLogger(__name__)


def parse_date(value: str | date) -> date:
    """Parse a YYYY-MM-DD date, raising InvalidQuery when malformed."""
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        raise InvalidQuery(f"Invalid date {value!r}, expected YYYY-MM-DD") from None


class AvailabilityEngine:
    """
    Computes and caches availability for one serving process.

    Collaborators are injected: the booking data source, the cache and
    (optionally) the invalidation bus mutations are reported to.
    """

    def __init__(
        self,
        source: BookingSource,
        cache: AvailabilityCache,
        bus: InvalidationBus | None = None,
        config: AvailabilityConfig | None = None,
        today: Callable[[], date] | None = None,
    ):
        self.source = source
        self.cache = cache
        self.bus = bus
        self.config = config or get_availability_config()
        self.today = today or date.today

    # ── Validation ───────────────────────────────────────────────────────

    def validate_duration(self, duration: float) -> float:
        config = self.config
        try:
            duration = float(duration)
        except (TypeError, ValueError):
            raise InvalidQuery(f"Invalid duration {duration!r}") from None
        if not math.isfinite(duration):
            raise InvalidQuery(f"Invalid duration {duration!r}")

        if duration <= 0:
            raise InvalidQuery("Duration must be positive")
        if duration > config.business_hours_length:
            raise InvalidQuery(
                f"Duration of {duration:g}h exceeds business hours "
                f"({config.business_hours.start}-{config.business_hours.end})"
            )
        if duration < config.min_duration_hours or duration > config.max_duration_hours:
            raise InvalidQuery(
                f"Duration must be between {config.min_duration_hours:g} "
                f"and {config.max_duration_hours:g} hours"
            )
        return duration

    def validate_ids(
        self,
        service_id: str | None,
        exclude_booking_id: str | None = None,
    ) -> None:
        if service_id is not None:
            self.source.validate_id(service_id, "service_id")
        if exclude_booking_id is not None:
            self.source.validate_id(exclude_booking_id, "exclude_booking_id")

    def validate_query(self, query: AvailabilityQuery) -> AvailabilityQuery:
        """Reject a fine-grained query before it touches cache or data source."""
        duration = self.validate_duration(query.duration)
        self.validate_ids(query.service_id, query.exclude_booking_id)

        today = self.today()
        if query.date < today:
            raise InvalidQuery("Cannot check availability for past dates")
        if query.date > today + timedelta(days=self.config.max_advance_days):
            raise InvalidQuery(
                f"Date cannot be more than {self.config.max_advance_days} days ahead"
            )

        if duration == query.duration:
            return query
        return AvailabilityQuery(
            date=query.date,
            service_id=query.service_id,
            duration=duration,
            exclude_booking_id=query.exclude_booking_id,
            skip_cache=query.skip_cache,
        )

    def make_query(
        self,
        target_date: str | date,
        service_id: str | None = None,
        duration: float | None = None,
        exclude_booking_id: str | None = None,
        skip_cache: bool = False,
    ) -> AvailabilityQuery:
        return self.validate_query(AvailabilityQuery(
            date=parse_date(target_date),
            service_id=str(service_id) if service_id is not None else None,
            duration=duration if duration is not None else self.config.default_duration_hours,
            exclude_booking_id=(
                str(exclude_booking_id) if exclude_booking_id is not None else None
            ),
            skip_cache=skip_cache,
        ))

    # ── Fine-grained path ────────────────────────────────────────────────

    @staticmethod
    def fingerprint(query: AvailabilityQuery) -> Fingerprint:
        return Fingerprint.single(
            query.date, query.service_id, query.duration, query.exclude_booking_id
        )

    def lookup(self, query: AvailabilityQuery) -> AvailabilityResult | None:
        """Cached result for a validated query, or None."""
        result = self.cache.get(self.fingerprint(query))
        logger.debug(f"Availability cache {'miss' if result is None else 'hit'}: {query}")
        return result

    def compute(self, query: AvailabilityQuery) -> AvailabilityResult:
        """
        Fetch bookings and resolve slots for a validated query.

        Raises:
            DataSourceUnavailable: bookings or service could not be read.
        """
        bookings = self.source.bookings_for_dates(
            [query.date], query.service_id, query.exclude_booking_id
        ).get(query.date, [])

        service_info = None
        if query.service_id is not None:
            service_info = self.source.service_info(query.service_id)

        return self._resolve_date(
            query.date,
            bookings,
            query.service_id,
            query.duration,
            exclude_booking_id=query.exclude_booking_id,
            service_info=service_info,
        )

    def store(self, query: AvailabilityQuery, result: AvailabilityResult) -> None:
        self.cache.set(self.fingerprint(query), result)

    def get_availability(
        self,
        target_date: str | date,
        service_id: str | None = None,
        duration: float | None = None,
        exclude_booking_id: str | None = None,
        skip_cache: bool = False,
    ) -> tuple[AvailabilityResult, bool]:
        """
        Availability of every candidate slot on a date.

        Returns:
            (result, cached) where cached tells whether it came from the cache.
        """
        query = self.make_query(
            target_date, service_id, duration, exclude_booking_id, skip_cache
        )
        return self.run_query(query)

    def run_query(self, query: AvailabilityQuery) -> tuple[AvailabilityResult, bool]:
        if not query.skip_cache:
            cached = self.lookup(query)
            if cached is not None:
                return cached, True

        result = self.compute(query)
        self.store(query, result)
        return result, False

    # ── Bulk path ────────────────────────────────────────────────────────

    def compute_dates(
        self,
        dates: Iterable[date],
        service_id: str | None,
        duration: float,
    ) -> dict[date, DateAvailability]:
        """Coarse availability for several dates using one batched fetch."""
        dates = list(dates)
        bookings_by_date = self.source.bookings_for_dates(dates, service_id)
        return {
            d: to_date_availability(
                self._resolve_date(d, bookings_by_date.get(d, []), service_id, duration)
            )
            for d in dates
        }

    def compute_date(
        self,
        target_date: date,
        service_id: str | None,
        duration: float,
    ) -> DateAvailability:
        return self.compute_dates([target_date], service_id, duration)[target_date]

    def store_day(
        self,
        service_id: str | None,
        duration: float,
        availability: DateAvailability,
    ) -> None:
        self.cache.set(Fingerprint.day(availability.date, service_id, duration), availability)

    def store_bulk(
        self,
        service_id: str | None,
        duration: float,
        results: Iterable[DateAvailability],
    ) -> tuple[DateAvailability, ...]:
        results = tuple(sorted(results, key=lambda r: r.date))
        if results:
            self.cache.set(
                Fingerprint.bulk([r.date for r in results], service_id, duration),
                results,
            )
        return results

    def get_bulk_availability(
        self,
        dates: Iterable[str | date],
        service_id: str | None = None,
        duration: float | None = None,
        skip_cache: bool = False,
    ) -> list[DateAvailability]:
        """
        Calendar-level availability for a set of dates, ordered by date.

        Past dates are reported unavailable rather than rejected.
        """
        parsed = sorted({parse_date(d) for d in dates})
        if not parsed:
            raise InvalidQuery("Dates array is required")
        if len(parsed) > self.config.max_bulk_dates:
            raise InvalidQuery(
                f"Cannot check more than {self.config.max_bulk_dates} dates at once"
            )
        duration = self.validate_duration(
            duration if duration is not None else self.config.default_duration_hours
        )
        service_id = str(service_id) if service_id is not None else None
        self.validate_ids(service_id)

        fingerprint = Fingerprint.bulk(parsed, service_id, duration)
        if not skip_cache:
            cached = self.cache.get(fingerprint)
            if cached is not None:
                logger.debug(f"Bulk availability cache hit for {len(parsed)} date(s)")
                return list(cached)

        today = self.today()
        total_slots = len(generate_slots(self.config.business_hours, duration, self.config))

        results: list[DateAvailability] = []
        to_compute: list[date] = []
        for d in parsed:
            if d < today:
                results.append(DateAvailability(
                    date=d,
                    available=False,
                    available_slots=0,
                    total_slots=total_slots,
                    availability_percentage=0.0,
                    reason=PAST_DATE_REASON,
                ))
                continue

            preloaded = None if skip_cache else self.get_preloaded(d, service_id, duration)
            if preloaded is not None:
                results.append(preloaded)
            else:
                to_compute.append(d)

        if to_compute:
            computed = self.compute_dates(to_compute, service_id, duration)
            for availability in computed.values():
                self.store_day(service_id, duration, availability)
            results.extend(computed.values())

        self.cache.set(fingerprint, tuple(sorted(results, key=lambda r: r.date)))
        return sorted(results, key=lambda r: r.date)

    # ── Preloaded quick checks ───────────────────────────────────────────

    def get_preloaded(
        self,
        target_date: date,
        service_id: str | None,
        duration: float | None = None,
    ) -> DateAvailability | None:
        """Per-date index entry written by bulk queries and preloads."""
        duration = duration if duration is not None else self.config.default_duration_hours
        service_id = str(service_id) if service_id is not None else None
        return self.cache.get(Fingerprint.day(target_date, service_id, duration))

    def is_date_available(self, target_date, service_id=None, duration=None) -> bool | None:
        preloaded = self.get_preloaded(target_date, service_id, duration)
        return preloaded.available if preloaded else None

    def available_slot_count(self, target_date, service_id=None, duration=None) -> int | None:
        preloaded = self.get_preloaded(target_date, service_id, duration)
        return preloaded.available_slots if preloaded else None

    # ── Mutations / introspection ────────────────────────────────────────

    def on_booking_mutated(self, target_date: date | None, service_id: str | None = None) -> None:
        """Called by booking-mutating code after commit."""
        if self.bus is not None:
            self.bus.on_booking_mutated(target_date, service_id)
        else:
            self.cache.delete_matching(lambda fp: fp.affected_by(target_date, service_id))

    def cache_stats(self) -> dict:
        keys = self.cache.keys()
        return {"size": len(keys), "keys": keys}

    # ── Helpers ──────────────────────────────────────────────────────────

    def _resolve_date(
        self,
        target_date: date,
        bookings: list[BookingInterval],
        service_id: str | None,
        duration: float,
        **kwargs,
    ) -> AvailabilityResult:
        candidates = generate_slots(self.config.business_hours, duration, self.config)
        return resolve(
            candidates,
            bookings,
            duration,
            target_date=target_date,
            service_id=service_id,
            **kwargs,
        )
