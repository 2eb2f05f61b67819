# backend/app/services/availability/invalidator.py
"""
Cache invalidation for availability results.

Triggers (called by booking-mutating code AFTER the change is committed):
✓ Booking created → invalidate(date, service_id)
✓ Booking status/time changed → invalidate old and new (date, service_id)
✓ Booking cancelled → invalidate(date, service_id)
✓ Admin bulk edit → invalidate() clears everything

Every registered invalidator gets every call; one failing invalidator is
logged and does not stop the others.

Cross-process fan-out goes through Redis pub/sub: RedisInvalidationBroadcaster
publishes local invalidations, invalidation_listener_loop replays remote ones
into the local bus without re-publishing them.
"""

import asyncio
import json
import logging
import threading
import uuid
from collections.abc import Callable
from datetime import date, timedelta

import redis.asyncio as aioredis
from redis import Redis
from redis.exceptions import RedisError

from .cache import AvailabilityCache, Fingerprint

logger = logging.getLogger(__name__)

Invalidator = Callable[[date | None, str | None], None]


class InvalidationBus:
    """Registry of cache-clearing callbacks."""

    def __init__(self):
        self._invalidators: list[tuple[Invalidator, bool]] = []
        self._lock = threading.Lock()

    def register(self, invalidator: Invalidator, *, local: bool = True) -> None:
        """
        Register an invalidator.

        Args:
            invalidator: fn(date | None, service_id | None)
            local: False for invalidators that forward to other processes;
                   they are skipped when replaying a remote invalidation.
        """
        with self._lock:
            if all(fn is not invalidator for fn, _ in self._invalidators):
                self._invalidators.append((invalidator, local))

    def unregister(self, invalidator: Invalidator) -> None:
        with self._lock:
            self._invalidators = [
                (fn, local) for fn, local in self._invalidators if fn is not invalidator
            ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._invalidators)

    def invalidate(
        self,
        target_date: date | None = None,
        service_id: str | None = None,
        *,
        broadcast: bool = True,
    ) -> int:
        """
        Fan out an invalidation to all registered invalidators.

        No arguments clears everything.

        Returns:
            Number of invalidators that failed.
        """
        service_id = str(service_id) if service_id is not None else None
        with self._lock:
            targets = [fn for fn, local in self._invalidators if local or broadcast]

        logger.info(
            f"Invalidating availability cache: date={target_date} "
            f"service={service_id or 'all'} invalidators={len(targets)}"
        )

        failures = 0
        for invalidator in targets:
            try:
                invalidator(target_date, service_id)
            except Exception:
                failures += 1
                logger.exception("Error in cache invalidator %r", invalidator)
        return failures

    def invalidate_range(
        self,
        date_start: date,
        date_end: date,
        service_id: str | None = None,
    ) -> int:
        """Invalidate every date in [date_start, date_end]. Returns failures."""
        failures = 0
        for target_date in get_affected_dates(date_start, date_end):
            failures += self.invalidate(target_date, service_id)
        return failures

    def on_booking_mutated(self, target_date: date, service_id: str | None = None) -> int:
        """Hook for booking create/update/cancel, called after commit."""
        return self.invalidate(target_date, service_id)


def cache_invalidator(cache: AvailabilityCache) -> Invalidator:
    """
    Build the invalidator that deletes affected entries from `cache`.

    date=None and service_id=None clears the cache. Otherwise removes the
    fine-grained entries for the date, per-date index entries, and bulk
    entries whose date list contains it.
    """
    def invalidate(target_date: date | None, service_id: str | None) -> None:
        if target_date is None and service_id is None:
            removed = cache.clear()
            logger.info(f"Cleared all availability cache ({removed} entries)")
            return

        def affected(fp: Fingerprint) -> bool:
            return fp.affected_by(target_date, service_id)

        removed = cache.delete_matching(affected)
        logger.info(
            f"Cleared {removed} cache entries for date {target_date}"
            + (f" and service {service_id}" if service_id else "")
        )

    return invalidate


def get_affected_dates(
    date_start: date,
    date_end: date,
) -> list[date]:
    """
    Get list of dates in range [date_start, date_end].

    Swapped bounds are accepted.
    """
    if date_start > date_end:
        date_start, date_end = date_end, date_start

    dates = []
    current = date_start
    while current <= date_end:
        dates.append(current)
        current += timedelta(days=1)

    return dates


# ── Cross-process broadcast ──────────────────────────────────────────────


def encode_invalidation(
    origin: str,
    target_date: date | None,
    service_id: str | None,
) -> str:
    return json.dumps({
        "origin": origin,
        "date": target_date.isoformat() if target_date else None,
        "service_id": service_id,
    })


def decode_invalidation(raw: str) -> tuple[str, date | None, str | None]:
    data = json.loads(raw)
    target_date = date.fromisoformat(data["date"]) if data.get("date") else None
    return data.get("origin", ""), target_date, data.get("service_id")


class RedisInvalidationBroadcaster:
    """Invalidator publishing invalidations to other serving processes."""

    def __init__(self, redis: Redis, channel: str, origin: str | None = None):
        self.redis = redis
        self.channel = channel
        self.origin = origin or uuid.uuid4().hex

    def __call__(self, target_date: date | None, service_id: str | None) -> None:
        message = encode_invalidation(self.origin, target_date, service_id)
        try:
            self.redis.publish(self.channel, message)
        except RedisError as e:
            # Remote caches fall back to TTL expiry
            logger.error(f"Failed to broadcast invalidation to {self.channel}: {e}")


def handle_remote_invalidation(bus: InvalidationBus, raw: str, origin: str) -> bool:
    """
    Replay one pub/sub message into the local bus.

    Returns:
        True if applied, False if it was our own message or malformed.
    """
    try:
        sender, target_date, service_id = decode_invalidation(raw)
    except (ValueError, KeyError, TypeError):
        logger.error(f"Invalid invalidation message: {raw!r}")
        return False

    if sender == origin:
        return False

    bus.invalidate(target_date, service_id, broadcast=False)
    return True


async def invalidation_listener_loop(
    redis_url: str,
    bus: InvalidationBus,
    channel: str,
    origin: str,
) -> None:
    """
    Subscribe to the invalidation channel and apply remote invalidations.

    Started as asyncio task in backend lifespan when REDIS_URL is set.
    """
    r = aioredis.from_url(redis_url, decode_responses=True)
    logger.info(f"invalidation_listener_loop started on {channel}")

    try:
        while True:
            pubsub = r.pubsub()
            try:
                await pubsub.subscribe(channel)
                async for message in pubsub.listen():
                    if message.get("type") != "message":
                        continue
                    handle_remote_invalidation(bus, message["data"], origin)

            except asyncio.CancelledError:
                logger.info("invalidation_listener_loop cancelled")
                raise
            except Exception:
                logger.exception("invalidation_listener_loop error, retrying in 5s")
                await asyncio.sleep(5)
            finally:
                await pubsub.aclose()
    finally:
        await r.aclose()
