"""Availability cache tests."""

import asyncio
import threading
from datetime import date

import pytest

from app.services.availability import AvailabilityCache, Fingerprint, cache_sweeper_loop
from app.services.availability.cache import KIND_BULK, make_key
from app.services.availability.domain import DateAvailability

from conftest import TARGET, FakeClock


def _day(d: date = TARGET) -> DateAvailability:
    return DateAvailability(
        date=d, available=True, available_slots=3, total_slots=9, availability_percentage=100 / 3
    )


def test_round_trip_before_expiry(cache: AvailabilityCache, clock: FakeClock) -> None:
    fp = Fingerprint.day(TARGET, "1", 2)
    payload = _day()
    cache.set(fp, payload)

    clock.advance(299)
    assert cache.get(fp) is payload
    assert cache.get(fp.key) is payload


def test_miss_after_ttl_and_lazy_delete(cache: AvailabilityCache, clock: FakeClock) -> None:
    fp = Fingerprint.day(TARGET, "1", 2)
    cache.set(fp, _day())

    clock.advance(301)
    assert cache.get(fp) is None
    assert len(cache) == 0


def test_per_entry_ttl(cache: AvailabilityCache, clock: FakeClock) -> None:
    short = Fingerprint.day(TARGET, "1", 2)
    long = Fingerprint.day(TARGET, "2", 2)
    cache.set(short, _day(), ttl=10)
    cache.set(long, _day())

    clock.advance(11)
    assert cache.get(short) is None
    assert cache.get(long) is not None


def test_sweep_removes_only_expired(cache: AvailabilityCache, clock: FakeClock) -> None:
    cache.set(Fingerprint.day(TARGET, "1", 2), _day(), ttl=10)
    cache.set(Fingerprint.day(TARGET, "2", 2), _day(), ttl=100)

    clock.advance(50)
    assert cache.sweep_expired() == 1
    assert len(cache) == 1


def test_set_replaces_entry(cache: AvailabilityCache) -> None:
    fp = Fingerprint.day(TARGET, "1", 2)
    first, second = _day(), _day()
    cache.set(fp, first)
    cache.set(fp, second)

    assert cache.get(fp) is second
    assert len(cache) == 1


def test_delete_and_clear(cache: AvailabilityCache) -> None:
    fp = Fingerprint.day(TARGET, "1", 2)
    cache.set(fp, _day())
    cache.set(Fingerprint.day(TARGET, "2", 2), _day())

    assert cache.delete(fp) is True
    assert cache.delete(fp) is False
    assert cache.clear() == 1
    assert cache.keys() == []


def test_key_is_independent_of_param_order() -> None:
    a = make_key("single", {"date": "2024-06-10", "serviceId": "1", "duration": 2.0})
    b = make_key("single", {"duration": 2.0, "serviceId": "1", "date": "2024-06-10"})
    assert a == b


def test_fingerprint_normalizes_inputs() -> None:
    assert Fingerprint.single(TARGET, 1, 2).key == Fingerprint.single(TARGET, "1", 2.0).key
    assert Fingerprint.single(TARGET, None, 2).key != Fingerprint.single(TARGET, "1", 2).key
    assert (
        Fingerprint.single(TARGET, "1", 2, exclude_booking_id="b1").key
        != Fingerprint.single(TARGET, "1", 2).key
    )

    d1, d2 = date(2024, 6, 10), date(2024, 6, 11)
    bulk = Fingerprint.bulk([d2, d1, d2], "1", 2)
    assert bulk.kind == KIND_BULK
    assert bulk.dates == (d1, d2)
    assert bulk.key == Fingerprint.bulk([d1, d2], "1", 2).key


def test_fingerprint_kinds_do_not_collide() -> None:
    assert Fingerprint.single(TARGET, "1", 2).key != Fingerprint.day(TARGET, "1", 2).key


def test_affected_by() -> None:
    other = date(2024, 6, 11)
    single = Fingerprint.single(TARGET, "1", 2)
    every_service = Fingerprint.single(TARGET, None, 2)
    bulk = Fingerprint.bulk([TARGET, other], "1", 2)

    assert single.affected_by(TARGET, "1")
    assert single.affected_by(TARGET, None)
    assert single.affected_by(None, "1")
    assert not single.affected_by(TARGET, "2")
    assert not single.affected_by(other, "1")
    assert every_service.affected_by(TARGET, "2")
    assert bulk.affected_by(other, "1")


def test_concurrent_access_keeps_key_space_consistent() -> None:
    cache = AvailabilityCache(ttl_seconds=60)
    fingerprints = [Fingerprint.day(TARGET, str(i), 2) for i in range(50)]

    def worker() -> None:
        for _ in range(20):
            for fp in fingerprints:
                cache.set(fp, _day())
                cache.get(fp)
            for fp in fingerprints[::2]:
                cache.delete(fp)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert set(cache.keys()) <= {fp.key for fp in fingerprints}
    for fp in fingerprints[1::2]:
        assert cache.get(fp) is not None


@pytest.mark.asyncio
async def test_sweeper_loop_removes_expired_entries(clock: FakeClock) -> None:
    cache = AvailabilityCache(ttl_seconds=5, clock=clock)
    cache.set(Fingerprint.day(TARGET, "1", 2), _day())
    clock.advance(10)

    task = asyncio.create_task(cache_sweeper_loop(cache, interval=0.01))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert cache.keys() == []
