# backend/app/routers/availability.py
"""
Availability API endpoints.

GET    /availability                    - Slots for a date (fine-grained)
GET    /availability/live               - Same, debounced per caller (X-Caller-Id)
POST   /availability                    - Calendar-level availability for many dates
DELETE /availability                    - Invalidate cache (date-scoped or all)
POST   /availability/invalidate-range   - Invalidate a date range
POST   /availability/preload            - Preload look-ahead window
GET    /availability/cache              - Cache introspection (debug)
"""

from fastapi import APIRouter, Depends, Header, Query, Request, Response

from ..schemas.availability import (
    AvailabilityEnvelope,
    AvailabilityResponse,
    BulkAvailabilityEnvelope,
    BulkAvailabilityRequest,
    BulkPerformance,
    CacheStatsResponse,
    DateAvailabilityResponse,
    InvalidateRangeRequest,
    PreloadResponse,
)
from ..services.availability import (
    AvailabilityEngine,
    BulkPreloader,
    InvalidationBus,
    QueryCoalescer,
    next_available_slot,
    parse_date,
)
from ..services.availability.domain import AvailabilityResult, PAST_DATE_REASON


router = APIRouter(prefix="/availability", tags=["availability"])


# ── Dependencies (components live on app.state, built in lifespan) ──────


def get_engine(request: Request) -> AvailabilityEngine:
    return request.app.state.availability_engine


def get_bus(request: Request) -> InvalidationBus:
    return request.app.state.invalidation_bus


def get_coalescer(request: Request) -> QueryCoalescer:
    return request.app.state.query_coalescer


def get_preloader(request: Request) -> BulkPreloader:
    return request.app.state.bulk_preloader


def _to_response(result: AvailabilityResult) -> AvailabilityResponse:
    response = AvailabilityResponse.model_validate(result)
    slot = next_available_slot(result)
    response.next_available_slot = slot.time if slot else None
    return response


# ── Queries ──────────────────────────────────────────────────────────────


@router.get("", response_model=AvailabilityEnvelope)
def get_availability(
    target_date: str = Query(..., alias="date"),
    service_id: str | None = None,
    duration: float | None = None,
    exclude_booking_id: str | None = None,
    engine: AvailabilityEngine = Depends(get_engine),
):
    """Availability of every candidate slot on a date."""
    result, cached = engine.get_availability(
        target_date, service_id, duration, exclude_booking_id
    )
    return AvailabilityEnvelope(data=_to_response(result), cached=cached)


@router.get("/live", response_model=AvailabilityEnvelope)
async def get_availability_live(
    target_date: str = Query(..., alias="date"),
    service_id: str | None = None,
    duration: float | None = None,
    exclude_booking_id: str | None = None,
    x_caller_id: str = Header(...),
    engine: AvailabilityEngine = Depends(get_engine),
    coalescer: QueryCoalescer = Depends(get_coalescer),
):
    """
    Debounced query for interactive calendars.

    A newer request with the same X-Caller-Id supersedes this one, which then
    answers 204 No Content.
    """
    query = engine.make_query(target_date, service_id, duration, exclude_booking_id)
    result = await coalescer.request(x_caller_id, query)
    if result is None:
        return Response(status_code=204)
    return AvailabilityEnvelope(data=_to_response(result))


@router.post("", response_model=BulkAvailabilityEnvelope)
def get_bulk_availability(
    body: BulkAvailabilityRequest,
    engine: AvailabilityEngine = Depends(get_engine),
):
    """Calendar-level availability for up to max_bulk_dates dates."""
    results = engine.get_bulk_availability(body.dates, body.service_id, body.duration)
    past = sum(1 for r in results if r.reason == PAST_DATE_REASON)

    return BulkAvailabilityEnvelope(
        data=[DateAvailabilityResponse.model_validate(r) for r in results],
        performance=BulkPerformance(
            total_dates=len(results),
            valid_dates=len(results) - past,
            past_dates=past,
        ),
    )


# ── Invalidation ─────────────────────────────────────────────────────────


@router.delete("")
def invalidate_availability(
    target_date: str | None = Query(None, alias="date"),
    service_id: str | None = None,
    bus: InvalidationBus = Depends(get_bus),
):
    """Invalidate cache for a date (optionally one service), or everything."""
    parsed = parse_date(target_date) if target_date else None
    failures = bus.invalidate(parsed, service_id)

    return {
        "success": True,
        "date": parsed.isoformat() if parsed else "all",
        "service_id": service_id,
        "failed_invalidators": failures,
    }


@router.post("/invalidate-range")
def invalidate_availability_range(
    body: InvalidateRangeRequest,
    bus: InvalidationBus = Depends(get_bus),
):
    start = parse_date(body.start_date)
    end = parse_date(body.end_date)
    failures = bus.invalidate_range(start, end, body.service_id)

    return {
        "success": True,
        "start_date": min(start, end).isoformat(),
        "end_date": max(start, end).isoformat(),
        "service_id": body.service_id,
        "failed_invalidators": failures,
    }


# ── Preload / debug ──────────────────────────────────────────────────────


@router.post("/preload", response_model=PreloadResponse)
async def preload_availability(
    service_id: str | None = None,
    duration: float | None = None,
    days: int | None = None,
    engine: AvailabilityEngine = Depends(get_engine),
    preloader: BulkPreloader = Depends(get_preloader),
):
    """Best-effort preload of the look-ahead window starting tomorrow."""
    requested = days if days is not None else engine.config.preload_days
    duration = duration if duration is not None else engine.config.default_duration_hours
    results = await preloader.preload_async(service_id, duration, requested)

    return PreloadResponse(
        service_id=service_id,
        duration=duration,
        requested_days=requested,
        cached_days=len(results),
        days=[DateAvailabilityResponse.model_validate(r) for r in results],
    )


@router.get("/cache", response_model=CacheStatsResponse)
def get_cache_stats(engine: AvailabilityEngine = Depends(get_engine)):
    """Current cache entries (debug only)."""
    return CacheStatsResponse(**engine.cache_stats())
