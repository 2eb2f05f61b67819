# backend/app/services/availability/store.py
"""
Booking and service data sources.

The engine only sees the BookingSource protocol. SqlBookingSource reads the
bookings/services tables through SQLAlchemy, one session per call, and turns
any database error into DataSourceUnavailable so callers fail closed.
"""

import logging
from collections import defaultdict
from collections.abc import Callable, Iterable
from datetime import date
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .domain import BookingInterval, ServiceInfo
from .errors import DataSourceUnavailable, InvalidQuery
from .resolver import CANCELLED_STATUSES

logger = logging.getLogger(__name__)


class BookingSource(Protocol):
    def bookings_for_dates(
        self,
        dates: Iterable[date],
        service_id: str | None = None,
        exclude_booking_id: str | None = None,
    ) -> dict[date, list[BookingInterval]]:
        """Non-cancelled bookings grouped by date, in one round trip."""
        ...

    def service_info(self, service_id: str) -> ServiceInfo | None:
        ...

    def validate_id(self, value: str, field: str) -> None:
        """Raise InvalidQuery when `value` cannot be an id of this source."""
        ...


def _as_int(value: str, field: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidQuery(f"{field} must be an integer id, got {value!r}") from None


class SqlBookingSource:
    """BookingSource backed by the SQL booking store."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def validate_id(self, value: str, field: str) -> None:
        _as_int(value, field)

    def bookings_for_dates(
        self,
        dates: Iterable[date],
        service_id: str | None = None,
        exclude_booking_id: str | None = None,
    ) -> dict[date, list[BookingInterval]]:
        from ...models.generated import Bookings

        dates = list(dates)
        grouped: dict[date, list[BookingInterval]] = defaultdict(list)
        if not dates:
            return grouped

        query_dates = [d.isoformat() for d in dates]

        try:
            with self.session_factory() as db:
                query = db.query(Bookings).filter(
                    Bookings.booking_date.in_(query_dates),
                    Bookings.status.notin_(list(CANCELLED_STATUSES)),
                )
                if exclude_booking_id is not None:
                    query = query.filter(
                        Bookings.id != _as_int(exclude_booking_id, "exclude_booking_id")
                    )
                if service_id is not None:
                    query = query.filter(
                        Bookings.service_id == _as_int(service_id, "service_id")
                    )
                rows = query.all()
        except SQLAlchemyError as e:
            logger.error(f"Failed to fetch bookings for {len(dates)} date(s): {e}")
            raise DataSourceUnavailable("Failed to fetch bookings") from e

        for row in rows:
            booking_date = date.fromisoformat(row.booking_date)
            grouped[booking_date].append(BookingInterval(
                id=str(row.id),
                booking_date=booking_date,
                start=row.start_time,
                end=row.end_time,
                status=row.status,
                service_id=str(row.service_id) if row.service_id is not None else None,
            ))

        return grouped

    def service_info(self, service_id: str) -> ServiceInfo | None:
        from ...models.generated import Services

        try:
            with self.session_factory() as db:
                service = db.query(Services).filter(
                    Services.id == _as_int(service_id, "service_id"),
                    Services.is_active == 1,
                ).first()
        except SQLAlchemyError as e:
            logger.error(f"Failed to fetch service {service_id}: {e}")
            raise DataSourceUnavailable("Failed to fetch service") from e

        if service is None:
            return None

        return ServiceInfo(
            id=str(service.id),
            name=service.name,
            base_price=service.base_price,
            price_per_hour=service.price_per_hour,
        )
