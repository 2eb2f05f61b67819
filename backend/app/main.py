import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .config import settings
from .database import SessionLocal
from .redis_client import redis_client
from .routers import availability
from .services.availability import (
    AvailabilityCache,
    AvailabilityEngine,
    BulkPreloader,
    DataSourceUnavailable,
    InvalidationBus,
    InvalidQuery,
    QueryCoalescer,
    RedisInvalidationBroadcaster,
    SqlBookingSource,
    cache_invalidator,
    cache_sweeper_loop,
    get_availability_config,
    invalidation_listener_loop,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def build_components(app: FastAPI, source=None, config=None, today=None) -> None:
    """Construct the per-process availability components onto app.state."""
    config = config or get_availability_config()
    cache = AvailabilityCache(ttl_seconds=config.cache_ttl_seconds)
    bus = InvalidationBus()
    engine = AvailabilityEngine(
        source=source or SqlBookingSource(SessionLocal),
        cache=cache,
        bus=bus,
        config=config,
        today=today,
    )
    coalescer = QueryCoalescer(engine)

    bus.register(cache_invalidator(cache))
    bus.register(coalescer.invalidator)

    app.state.availability_cache = cache
    app.state.invalidation_bus = bus
    app.state.availability_engine = engine
    app.state.query_coalescer = coalescer
    app.state.bulk_preloader = BulkPreloader(engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if not hasattr(app.state, "availability_engine"):
        build_components(app)

    config = app.state.availability_engine.config
    tasks = [
        asyncio.create_task(
            cache_sweeper_loop(app.state.availability_cache, config.sweep_interval_seconds)
        ),
    ]

    if redis_client is not None:
        broadcaster = RedisInvalidationBroadcaster(redis_client, settings.invalidation_channel)
        app.state.invalidation_bus.register(broadcaster, local=False)
        tasks.append(asyncio.create_task(
            invalidation_listener_loop(
                settings.redis_url,
                app.state.invalidation_bus,
                settings.invalidation_channel,
                broadcaster.origin,
            )
        ))

    try:
        yield
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


app = FastAPI(title="Availability API", lifespan=lifespan)
app.include_router(availability.router)


@app.exception_handler(InvalidQuery)
async def invalid_query_handler(request: Request, exc: InvalidQuery):
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(DataSourceUnavailable)
async def data_source_unavailable_handler(request: Request, exc: DataSourceUnavailable):
    logger.error(f"{request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=503,
        content={"error": "Availability data is temporarily unavailable, try again"},
    )


@app.get("/health")
def health(request: Request):
    status = {"cache_entries": len(request.app.state.availability_cache)}
    if redis_client is not None:
        status["redis"] = redis_client.ping()
    return status
