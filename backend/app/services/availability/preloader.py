# backend/app/services/availability/preloader.py
"""
Bulk preloading of calendar-level availability.

Computes DateAvailability for `look_ahead_days` consecutive dates starting
tomorrow and writes each into the per-date index (day:*) plus one bulk entry
for the dates that succeeded, so calendar views can shade dates without a
round trip per date.

Best effort: the batched fetch is tried first; if it fails, dates are
retried one by one and dates that still fail are skipped. Nothing raised
here reaches the caller.
"""

import asyncio
import logging
from datetime import date, timedelta

from .availability import AvailabilityEngine
from .domain import DateAvailability
from .errors import InvalidQuery, PreloadFailure

logger = logging.getLogger(__name__)


class BulkPreloader:
    def __init__(self, engine: AvailabilityEngine):
        self.engine = engine

    def preload_dates(self, look_ahead_days: int, start: date | None = None) -> list[date]:
        """Consecutive dates starting tomorrow (or `start`)."""
        start = start or self.engine.today() + timedelta(days=1)
        return [start + timedelta(days=i) for i in range(look_ahead_days)]

    def preload(
        self,
        service_id: str | None,
        duration: float | None = None,
        look_ahead_days: int | None = None,
    ) -> list[DateAvailability]:
        """
        Populate the cache for the look-ahead window.

        Returns:
            DateAvailability for every date that was cached (failed dates
            are absent). Never raises.
        """
        engine = self.engine
        config = engine.config
        look_ahead_days = look_ahead_days if look_ahead_days is not None else config.preload_days
        service_id = str(service_id) if service_id is not None else None

        try:
            duration = engine.validate_duration(
                duration if duration is not None else config.default_duration_hours
            )
            engine.validate_ids(service_id)
        except InvalidQuery as e:
            logger.warning(f"Preload skipped: {e}")
            return []

        dates = self.preload_dates(look_ahead_days)
        if not dates:
            return []

        try:
            computed = engine.compute_dates(dates, service_id, duration)
        except Exception as e:
            logger.warning(
                f"Batched preload failed for service={service_id or 'all'} "
                f"({len(dates)} dates), retrying per date: {e}"
            )
            computed = self._compute_each(dates, service_id, duration)

        for availability in computed.values():
            engine.store_day(service_id, duration, availability)
        results = engine.store_bulk(service_id, duration, computed.values())

        logger.info(
            f"Preloaded availability for {len(results)}/{len(dates)} dates "
            f"(service={service_id or 'all'}, duration={duration:g}h)"
        )
        return list(results)

    def _compute_each(
        self,
        dates: list[date],
        service_id: str | None,
        duration: float,
    ) -> dict[date, DateAvailability]:
        computed: dict[date, DateAvailability] = {}
        for d in dates:
            try:
                computed[d] = self.compute_one(d, service_id, duration)
            except PreloadFailure as e:
                logger.warning(f"{e}")
        return computed

    def compute_one(
        self,
        target_date: date,
        service_id: str | None,
        duration: float,
    ) -> DateAvailability:
        """
        Raises:
            PreloadFailure: wrapping whatever the computation raised.
        """
        try:
            return self.engine.compute_date(target_date, service_id, duration)
        except Exception as e:
            raise PreloadFailure(target_date, e) from e

    async def preload_async(
        self,
        service_id: str | None,
        duration: float | None = None,
        look_ahead_days: int | None = None,
    ) -> list[DateAvailability]:
        """Run preload() in a worker thread (synchronous DB access)."""
        return await asyncio.to_thread(self.preload, service_id, duration, look_ahead_days)
