# backend/app/services/availability/errors.py
"""
Error taxonomy of the availability engine.

A superseded coalesced query is not an error: it resolves to None.
"""


class AvailabilityError(Exception):
    """Base class for availability engine errors."""


class InvalidQuery(AvailabilityError, ValueError):
    """Malformed date, bad duration or oversized bulk request."""


class DataSourceUnavailable(AvailabilityError):
    """Booking or service data could not be fetched."""


class PreloadFailure(AvailabilityError):
    """A single date could not be preloaded. Logged, never surfaced."""

    def __init__(self, target_date, cause: Exception):
        self.target_date = target_date
        self.cause = cause
        super().__init__(f"Preload failed for {target_date}: {cause}")
