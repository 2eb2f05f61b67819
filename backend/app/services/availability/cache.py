# backend/app/services/availability/cache.py
"""
In-process, time-windowed availability cache.

Key format: {kind}:{sorted JSON of query params}
    single:{"date":"2024-06-10","duration":2.0,"excludeBookingId":"none","serviceId":"all"}
    bulk:{"dates":["2024-06-10","2024-06-11"],"duration":2.0,"serviceId":"7"}
    day:{"date":"2024-06-10","duration":2.0,"serviceId":"7"}

Value: CacheEntry (fingerprint, payload, created_at, expires_at).
Payload shape is tied to the fingerprint kind:
    single → AvailabilityResult
    bulk   → tuple[DateAvailability, ...]
    day    → DateAvailability  (per-date index filled by bulk queries/preloads)

All map access goes through one lock. Entries are never mutated: a set
replaces the whole entry, invalidation deletes it.
"""

import asyncio
import json
import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date

from .domain import AvailabilityResult, DateAvailability

logger = logging.getLogger(__name__)

KIND_SINGLE = "single"
KIND_BULK = "bulk"
KIND_DAY = "day"

ALL_SERVICES = "all"
NO_EXCLUSION = "none"


def make_key(kind: str, params: dict) -> str:
    """Deterministic key: identical params give identical keys regardless of order."""
    return f"{kind}:{json.dumps(params, sort_keys=True, separators=(',', ':'), default=str)}"


@dataclass(frozen=True)
class Fingerprint:
    """Identity of a cached query; knows which mutations affect it."""
    kind: str
    dates: tuple[date, ...]
    service_id: str
    duration: float
    exclude_booking_id: str = NO_EXCLUSION

    @classmethod
    def single(
        cls,
        target_date: date,
        service_id: str | None,
        duration: float,
        exclude_booking_id: str | None = None,
    ) -> "Fingerprint":
        return cls(
            kind=KIND_SINGLE,
            dates=(target_date,),
            service_id=str(service_id) if service_id is not None else ALL_SERVICES,
            duration=float(duration),
            exclude_booking_id=(
                str(exclude_booking_id) if exclude_booking_id is not None else NO_EXCLUSION
            ),
        )

    @classmethod
    def bulk(
        cls,
        dates: Iterable[date],
        service_id: str | None,
        duration: float,
    ) -> "Fingerprint":
        return cls(
            kind=KIND_BULK,
            dates=tuple(sorted(set(dates))),
            service_id=str(service_id) if service_id is not None else ALL_SERVICES,
            duration=float(duration),
        )

    @classmethod
    def day(
        cls,
        target_date: date,
        service_id: str | None,
        duration: float,
    ) -> "Fingerprint":
        return cls(
            kind=KIND_DAY,
            dates=(target_date,),
            service_id=str(service_id) if service_id is not None else ALL_SERVICES,
            duration=float(duration),
        )

    @property
    def key(self) -> str:
        if self.kind == KIND_BULK:
            params = {
                "dates": [d.isoformat() for d in self.dates],
                "serviceId": self.service_id,
                "duration": self.duration,
            }
        elif self.kind == KIND_SINGLE:
            params = {
                "date": self.dates[0].isoformat(),
                "serviceId": self.service_id,
                "duration": self.duration,
                "excludeBookingId": self.exclude_booking_id,
            }
        else:
            params = {
                "date": self.dates[0].isoformat(),
                "serviceId": self.service_id,
                "duration": self.duration,
            }
        return make_key(self.kind, params)

    def affected_by(self, target_date: date | None, service_id: str | None = None) -> bool:
        """
        Whether a booking mutation on (target_date, service_id) can change
        this entry. None means "any".
        """
        if target_date is not None and target_date not in self.dates:
            return False
        if service_id is None:
            return True
        return self.service_id in (str(service_id), ALL_SERVICES)


Payload = AvailabilityResult | tuple[DateAvailability, ...] | DateAvailability


@dataclass(frozen=True)
class CacheEntry:
    fingerprint: Fingerprint
    payload: Payload
    created_at: float
    expires_at: float

    @property
    def kind(self) -> str:
        return self.fingerprint.kind

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class AvailabilityCache:
    """
    Thread-safe TTL cache of availability results.

    One instance per serving process; constructed at startup and injected
    into the engine, the bus and the preloader.
    """

    def __init__(
        self,
        ttl_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key_of(key: Fingerprint | str) -> str:
        return key.key if isinstance(key, Fingerprint) else key

    # ── Read ─────────────────────────────────────────────────────────────

    def get(self, key: Fingerprint | str) -> Payload | None:
        """
        Get a live payload.

        Returns:
            The payload, or None on miss. Expired entries are removed lazily.
        """
        entry = self.get_entry(key)
        return entry.payload if entry is not None else None

    def get_entry(self, key: Fingerprint | str) -> CacheEntry | None:
        key = self._key_of(key)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return None
            return entry

    # ── Write ────────────────────────────────────────────────────────────

    def set(
        self,
        fingerprint: Fingerprint,
        payload: Payload,
        ttl: float | None = None,
    ) -> CacheEntry:
        """Store a payload; replaces any existing entry atomically."""
        now = self._clock()
        entry = CacheEntry(
            fingerprint=fingerprint,
            payload=payload,
            created_at=now,
            expires_at=now + (ttl if ttl is not None else self.ttl_seconds),
        )
        with self._lock:
            self._entries[fingerprint.key] = entry
        return entry

    # ── Delete ───────────────────────────────────────────────────────────

    def delete(self, key: Fingerprint | str) -> bool:
        key = self._key_of(key)
        with self._lock:
            return self._entries.pop(key, None) is not None

    def delete_matching(self, predicate: Callable[[Fingerprint], bool]) -> int:
        """Delete every entry whose fingerprint matches. Returns count."""
        with self._lock:
            keys = [k for k, e in self._entries.items() if predicate(e.fingerprint)]
            for key in keys:
                del self._entries[key]
        return len(keys)

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        return count

    def sweep_expired(self) -> int:
        """Remove all expired entries. Returns number removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                del self._entries[key]
        return len(expired)

    # ── Debug ────────────────────────────────────────────────────────────

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)


async def cache_sweeper_loop(cache: AvailabilityCache, interval: float = 60) -> None:
    """
    Periodic loop removing expired cache entries.

    Runs as an asyncio task in backend lifespan. Sweep errors are logged and
    the loop keeps going; a missed sweep only delays memory reclamation.
    """
    logger.info("cache_sweeper_loop started")

    try:
        while True:
            await asyncio.sleep(interval)
            try:
                removed = cache.sweep_expired()
                if removed:
                    logger.debug("Swept %d expired availability entries", removed)
            except Exception:
                logger.exception("cache_sweeper_loop error")
    except asyncio.CancelledError:
        logger.info("cache_sweeper_loop cancelled")
        raise
