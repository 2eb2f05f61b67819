"""Invalidation bus tests."""

import json
from datetime import date

from app.services.availability import (
    AvailabilityCache,
    Fingerprint,
    InvalidationBus,
    RedisInvalidationBroadcaster,
    cache_invalidator,
)
from app.services.availability.domain import DateAvailability
from app.services.availability.invalidator import (
    encode_invalidation,
    get_affected_dates,
    handle_remote_invalidation,
)

from conftest import TARGET

OTHER = date(2024, 6, 11)


def _payload(d: date = TARGET) -> DateAvailability:
    return DateAvailability(
        date=d, available=True, available_slots=1, total_slots=1, availability_percentage=100.0
    )


def _fill(cache: AvailabilityCache) -> dict[str, Fingerprint]:
    fingerprints = {
        "single": Fingerprint.single(TARGET, "1", 2),
        "single_all": Fingerprint.single(TARGET, None, 2),
        "single_other_service": Fingerprint.single(TARGET, "2", 2),
        "single_other_date": Fingerprint.single(OTHER, "1", 2),
        "day": Fingerprint.day(TARGET, "1", 2),
        "bulk": Fingerprint.bulk([TARGET, OTHER], "1", 2),
        "bulk_other": Fingerprint.bulk([OTHER], "1", 2),
    }
    for fp in fingerprints.values():
        cache.set(fp, _payload())
    return fingerprints


def _present(cache: AvailabilityCache, fingerprints: dict[str, Fingerprint]) -> set[str]:
    return {name for name, fp in fingerprints.items() if cache.get(fp) is not None}


def test_invalidate_without_arguments_clears_everything(
    cache: AvailabilityCache, bus: InvalidationBus
) -> None:
    _fill(cache)
    bus.invalidate()
    assert len(cache) == 0


def test_invalidate_date_and_service(cache: AvailabilityCache, bus: InvalidationBus) -> None:
    fingerprints = _fill(cache)
    bus.invalidate(TARGET, "1")

    assert _present(cache, fingerprints) == {
        "single_other_service", "single_other_date", "bulk_other",
    }


def test_invalidate_date_for_all_services(cache: AvailabilityCache, bus: InvalidationBus) -> None:
    fingerprints = _fill(cache)
    bus.invalidate(TARGET)

    assert _present(cache, fingerprints) == {"single_other_date", "bulk_other"}


def test_invalidate_is_idempotent(cache: AvailabilityCache, bus: InvalidationBus) -> None:
    fingerprints = _fill(cache)
    bus.invalidate(TARGET, "1")
    once = _present(cache, fingerprints)
    bus.invalidate(TARGET, "1")

    assert _present(cache, fingerprints) == once


def test_fan_out_survives_failing_invalidator(cache: AvailabilityCache) -> None:
    calls = []

    def broken(target_date, service_id):
        raise RuntimeError("boom")

    bus = InvalidationBus()
    bus.register(broken)
    bus.register(lambda d, s: calls.append((d, s)))
    bus.register(cache_invalidator(cache))
    cache.set(Fingerprint.single(TARGET, "1", 2), _payload())

    failures = bus.invalidate(TARGET, "1")

    assert failures == 1
    assert calls == [(TARGET, "1")]
    assert len(cache) == 0


def test_register_is_unique_and_unregister_removes() -> None:
    calls = []

    def invalidator(d, s):
        calls.append(d)

    bus = InvalidationBus()
    bus.register(invalidator)
    bus.register(invalidator)
    assert len(bus) == 1

    bus.invalidate(TARGET)
    bus.unregister(invalidator)
    bus.invalidate(TARGET)

    assert calls == [TARGET]
    assert len(bus) == 0


def test_service_id_is_normalized_to_string() -> None:
    calls = []
    bus = InvalidationBus()
    bus.register(lambda d, s: calls.append(s))

    bus.invalidate(TARGET, 7)
    assert calls == ["7"]


def test_invalidate_range_hits_every_date() -> None:
    calls = []
    bus = InvalidationBus()
    bus.register(lambda d, s: calls.append((d, s)))

    bus.invalidate_range(date(2024, 6, 12), date(2024, 6, 10), "1")

    assert calls == [
        (date(2024, 6, 10), "1"),
        (date(2024, 6, 11), "1"),
        (date(2024, 6, 12), "1"),
    ]


def test_get_affected_dates_single_day() -> None:
    assert get_affected_dates(TARGET, TARGET) == [TARGET]


class StubRedis:
    def __init__(self):
        self.published: list[tuple[str, str]] = []

    def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        return 1


def test_broadcaster_publishes_invalidation() -> None:
    redis = StubRedis()
    broadcaster = RedisInvalidationBroadcaster(redis, "availability:invalidate", origin="proc-a")
    bus = InvalidationBus()
    bus.register(broadcaster, local=False)

    bus.invalidate(TARGET, "1")

    channel, raw = redis.published[0]
    assert channel == "availability:invalidate"
    assert json.loads(raw) == {"origin": "proc-a", "date": "2024-06-10", "service_id": "1"}


def test_remote_invalidation_is_applied_without_rebroadcast(cache: AvailabilityCache) -> None:
    redis = StubRedis()
    bus = InvalidationBus()
    bus.register(cache_invalidator(cache))
    bus.register(RedisInvalidationBroadcaster(redis, "ch", origin="proc-a"), local=False)
    cache.set(Fingerprint.single(TARGET, "1", 2), _payload())

    applied = handle_remote_invalidation(bus, encode_invalidation("proc-b", TARGET, "1"), "proc-a")

    assert applied is True
    assert len(cache) == 0
    assert redis.published == []


def test_own_and_malformed_messages_are_ignored(cache: AvailabilityCache) -> None:
    bus = InvalidationBus()
    bus.register(cache_invalidator(cache))
    cache.set(Fingerprint.single(TARGET, "1", 2), _payload())

    assert handle_remote_invalidation(bus, encode_invalidation("proc-a", None, None), "proc-a") is False
    assert handle_remote_invalidation(bus, "not json", "proc-a") is False
    assert len(cache) == 1
