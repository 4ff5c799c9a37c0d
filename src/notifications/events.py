"""In-process event bus for appointment lifecycle events.

The engine never delivers notifications itself. After a booking, status
change or availability change has committed, the booking service publishes
a SystemEvent here; external bridges (customer messaging, chat linking,
reminders) and the audit logger subscribe to it.

Usage:
    from src.notifications.events import emit, subscribe

    subscribe(notify_customer, event_types=[EventType.APPOINTMENT_STATUS_CHANGED])
    await emit(SystemEvent(event_type=EventType.APPOINTMENT_CREATED, entity_id=appt.id))
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Callable, Coroutine
from typing import Any

from src.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[SystemEvent], Coroutine[Any, Any, None]]

# Upper bound on waiting for queued events at shutdown
DRAIN_TIMEOUT_SECONDS = 10.0


class EventBus:
    """Queue-backed publisher; one background task fans events out."""

    def __init__(self) -> None:
        self._global: list[EventHandler] = []
        self._typed: dict[EventType, list[EventHandler]] = defaultdict(list)
        self._queue: asyncio.Queue[SystemEvent] | None = None
        self._worker: asyncio.Task[None] | None = None

    # ── Subscriptions ────────────────────────────────────────────────

    def subscribe(self, handler: EventHandler, event_types: list[EventType] | None = None) -> None:
        """Register ``handler`` for ``event_types``, or for every event when None."""
        if event_types is None:
            self._global.append(handler)
            logger.info("Registered global event subscriber: %s", handler.__name__)
            return
        for event_type in event_types:
            self._typed[event_type].append(handler)
        logger.info(
            "Registered event subscriber %s for types: %s",
            handler.__name__,
            [t.value for t in event_types],
        )

    def unsubscribe(self, handler: EventHandler) -> None:
        if handler in self._global:
            self._global.remove(handler)
        for handlers in self._typed.values():
            if handler in handlers:
                handlers.remove(handler)

    def handlers_for(self, event_type: EventType) -> list[EventHandler]:
        return [*self._global, *self._typed.get(event_type, [])]

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    # ── Publishing ───────────────────────────────────────────────────

    async def emit(self, event: SystemEvent) -> None:
        """Queue an event; slow subscribers never block the request that emitted it."""
        if self._queue is None:
            self._queue = asyncio.Queue()
        self._ensure_worker()
        await self._queue.put(event)
        logger.debug("Event emitted: %s (entity=%s)", event.event_type.value, event.entity_id)

    async def dispatch(self, event: SystemEvent) -> None:
        """Deliver to every matching handler concurrently; failures are logged only."""
        handlers = self.handlers_for(event.event_type)
        if not handlers:
            return
        results = await asyncio.gather(*(handler(event) for handler in handlers), return_exceptions=True)
        for handler, result in zip(handlers, results):
            if isinstance(result, Exception):
                logger.error(
                    "Handler %s failed for event %s: %s",
                    handler.__name__,
                    event.event_type.value,
                    result,
                    exc_info=result,
                )

    # ── Worker lifecycle ─────────────────────────────────────────────

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="event-bus")
            logger.info("Event worker started")

    async def _run(self) -> None:
        queue = self._queue
        if queue is None:
            return
        while True:
            event = await queue.get()
            try:
                await self.dispatch(event)
            except Exception:
                logger.exception("Error dispatching %s", event.event_type.value)
            finally:
                queue.task_done()

    async def start(self) -> None:
        if self._queue is None:
            self._queue = asyncio.Queue()
        self._ensure_worker()
        logger.info(
            "Event system started with %d global + %d typed subscribers",
            len(self._global),
            sum(len(v) for v in self._typed.values()),
        )

    async def stop(self) -> None:
        """Deliver queued events (bounded by DRAIN_TIMEOUT_SECONDS), then stop."""
        if self._queue is not None and self._worker is not None and not self._worker.done():
            try:
                await asyncio.wait_for(self._queue.join(), timeout=DRAIN_TIMEOUT_SECONDS)
            except asyncio.TimeoutError:
                logger.warning("Event bus stopped with %d undelivered events", self.pending)

        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass

        self._worker = None
        self._queue = None
        logger.info("Event system stopped")


# Module-level singleton
event_bus = EventBus()


# ── Module API ───────────────────────────────────────────────────────


def subscribe(handler: EventHandler, event_types: list[EventType] | None = None) -> None:
    event_bus.subscribe(handler, event_types)


def unsubscribe(handler: EventHandler) -> None:
    event_bus.unsubscribe(handler)


async def emit(event: SystemEvent) -> None:
    await event_bus.emit(event)


async def dispatch_now(event: SystemEvent) -> None:
    """Deliver an event immediately, bypassing the queue."""
    await event_bus.dispatch(event)


async def start_event_system() -> None:
    """Call during FastAPI lifespan startup."""
    await event_bus.start()


async def stop_event_system() -> None:
    """Call during FastAPI lifespan shutdown."""
    await event_bus.stop()
