# backend/app/services/availability/coalescer.py
"""
Per-caller debouncing and cancellation of availability queries.

Each logical caller (a calendar view, a websocket, a user session) moves
through
    IDLE → PENDING (debounce timer) → IN_FLIGHT (cancellable) → DELIVERED
                 ↘──────────────── CANCELLED ←──────────────↙
A new request from the same caller cancels the previous task wherever it is.
Only the latest request of a caller ever gets a result; superseded requests
resolve to None and never write to the cache. A caller is dropped once its
latest request settles, unless it has a refresh listener.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from enum import Enum

from .availability import AvailabilityEngine
from .domain import AvailabilityQuery, AvailabilityResult

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


ResultListener = Callable[[AvailabilityResult], None]


@dataclass
class CallerState:
    generation: int = 0
    phase: Phase = Phase.IDLE
    task: asyncio.Task | None = None
    query: AvailabilityQuery | None = None  # currently displayed query
    listener: ResultListener | None = None

    def supersede(self) -> int:
        """Start a new generation, cancelling whatever is outstanding."""
        self.generation += 1
        if self.task is not None and not self.task.done():
            self.task.cancel()
            self.phase = Phase.CANCELLED
        return self.generation


class QueryCoalescer:
    """
    Debounces and deduplicates rapid queries per caller.

    Attributes:
        computations: Number of cache-miss computations started, for
                      operational visibility.
    """

    def __init__(
        self,
        engine: AvailabilityEngine,
        debounce_seconds: float | None = None,
    ):
        self.engine = engine
        self.debounce_seconds = (
            debounce_seconds if debounce_seconds is not None
            else engine.config.debounce_seconds
        )
        self.computations = 0
        self._callers: dict[str, CallerState] = {}
        self._loop: asyncio.AbstractEventLoop | None = None

    def state(self, caller_id: str) -> CallerState | None:
        return self._callers.get(caller_id)

    def set_listener(self, caller_id: str, listener: ResultListener | None) -> None:
        """
        Subscribe a caller to refreshes triggered by invalidation.

        Programmatic hook for push transports (websocket, SSE) that keep a
        date on screen; the HTTP endpoints do not set one. A caller with a
        listener keeps its state until forget(). Passing None unsubscribes.
        """
        if listener is None:
            state = self._callers.get(caller_id)
            if state is not None:
                state.listener = None
                if state.task is None or state.task.done():
                    del self._callers[caller_id]
            return
        self._callers.setdefault(caller_id, CallerState()).listener = listener

    def forget(self, caller_id: str) -> None:
        """Caller went away: cancel its outstanding request and drop its state."""
        state = self._callers.pop(caller_id, None)
        if state is not None:
            state.supersede()
            state.phase = Phase.CANCELLED

    async def request(
        self,
        caller_id: str,
        query: AvailabilityQuery,
    ) -> AvailabilityResult | None:
        """
        Debounced availability query.

        Returns:
            The result, or None if a newer request from the same caller
            superseded this one.

        Raises:
            InvalidQuery: immediately, without disturbing earlier requests.
            DataSourceUnavailable: if this (still current) request failed.
        """
        query = self.engine.validate_query(query)
        self._loop = asyncio.get_running_loop()

        state = self._callers.setdefault(caller_id, CallerState())
        generation = state.supersede()
        state.query = query
        state.phase = Phase.PENDING
        task = asyncio.create_task(self._run(state, generation, query))
        state.task = task

        try:
            return await task
        except asyncio.CancelledError:
            if generation != state.generation:
                return None
            raise
        except Exception:
            if generation != state.generation:
                return None
            state.phase = Phase.IDLE
            raise
        finally:
            self._release(caller_id, state, generation)

    def _release(self, caller_id: str, state: CallerState, generation: int) -> None:
        """Drop a caller once its latest request settled and nothing listens."""
        if generation != state.generation or state.listener is not None:
            return
        if self._callers.get(caller_id) is state:
            del self._callers[caller_id]

    async def _run(
        self,
        state: CallerState,
        generation: int,
        query: AvailabilityQuery,
    ) -> AvailabilityResult | None:
        await asyncio.sleep(self.debounce_seconds)

        if not query.skip_cache:
            cached = self.engine.lookup(query)
            if cached is not None:
                return self._deliver(state, generation, cached)

        state.phase = Phase.IN_FLIGHT
        self.computations += 1
        result = await asyncio.to_thread(self.engine.compute, query)

        if generation != state.generation:
            logger.debug(f"Dropping superseded availability result for {query.date}")
            return None

        self.engine.store(query, result)
        return self._deliver(state, generation, result)

    @staticmethod
    def _deliver(
        state: CallerState,
        generation: int,
        result: AvailabilityResult,
    ) -> AvailabilityResult | None:
        if generation != state.generation:
            return None
        state.phase = Phase.DELIVERED
        return result

    # ── Displayed-date refresh ───────────────────────────────────────────

    def invalidator(self, target_date: date | None, service_id: str | None) -> None:
        """
        Bus invalidator: re-query callers displaying an affected date.

        May be called from any thread; refreshes run on the event loop.
        """
        loop = self._loop
        if loop is None or loop.is_closed():
            return

        for caller_id, state in list(self._callers.items()):
            query = state.query
            if query is None or state.listener is None:
                continue
            if target_date is not None and query.date != target_date:
                continue
            if (
                service_id is not None
                and query.service_id is not None
                and query.service_id != str(service_id)
            ):
                continue
            loop.call_soon_threadsafe(self._schedule_refresh, caller_id, query)

    def _schedule_refresh(self, caller_id: str, query: AvailabilityQuery) -> None:
        asyncio.ensure_future(self._refresh(caller_id, query))

    async def _refresh(self, caller_id: str, query: AvailabilityQuery) -> None:
        # Runs beside the caller's own requests: a refresh never supersedes
        # them, and is dropped if the caller has moved on meanwhile.
        state = self._callers.get(caller_id)
        if state is None or state.listener is None:
            return
        generation = state.generation

        try:
            result = await asyncio.to_thread(self.engine.compute, query)
        except Exception:
            logger.exception(f"Availability refresh failed for caller {caller_id}")
            return

        if generation != state.generation or self._callers.get(caller_id) is not state:
            logger.debug(f"Dropping stale availability refresh for caller {caller_id}")
            return

        self.engine.store(query, result)
        if state.listener is not None:
            state.listener(result)
