"""
Event Bus: in-process dispatch of domain events to async handlers.

Design:
- asyncio.Queue decouples the ingestion transaction from notification fanout
- Handlers run sequentially in subscription order; a failing handler is
  logged and never affects the others or the producer
- The bus is constructed by the application and passed to producers;
  there is no module-level instance
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

# ── Event type constants ─────────────────────────────────────────────────────
MATCH_STATUS_CHANGED = "MATCH_STATUS_CHANGED"
MATCH_EVENT_RECORDED = "MATCH_EVENT_RECORDED"


# ── Event ────────────────────────────────────────────────────────────────────
class Event:
    """Immutable event payload."""

    __slots__ = ("event_type", "payload", "created_at")

    def __init__(self, event_type: str, payload: Dict[str, Any]):
        self.event_type = event_type
        self.payload = payload
        self.created_at = datetime.now(timezone.utc)

    def __repr__(self):
        return f"Event({self.event_type}, match_id={self.payload.get('match_id')})"


Handler = Callable[[Event], Awaitable[None]]


# ── EventBus ─────────────────────────────────────────────────────────────────
class EventBus:
    """
    In-memory event bus with a single async consumer.

    Events are dispatched to registered handlers in subscription order.
    If no handler is registered for an event type, the event is dropped
    with a debug log.
    """

    def __init__(self, max_queue_size: int = 1000):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue_size)
        self._handlers: Dict[str, List[Handler]] = {}
        self._task: Optional[asyncio.Task] = None
        self._running = False

    def subscribe(self, event_type: str, handler: Handler):
        """Register an async handler for an event type."""
        self._handlers.setdefault(event_type, []).append(handler)
        logger.info(f"EventBus: subscribed {getattr(handler, '__name__', handler)} to {event_type}")

    async def emit(self, event_type: str, payload: Dict[str, Any]):
        """Queue an event for async processing (dropped with an error log when full)."""
        event = Event(event_type, payload)
        try:
            self._queue.put_nowait(event)
            logger.debug(f"EventBus: emitted {event}")
        except asyncio.QueueFull:
            logger.error(f"EventBus: queue full ({self._queue.maxsize}), dropping {event}")

    async def start(self):
        """Start the background consumer task."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._consumer_loop())
        logger.info("EventBus: started consumer loop")

    async def stop(self, timeout: float = 10.0):
        """Graceful shutdown: drain queued events then stop."""
        self._running = False
        if self._task:
            # Sentinel goes behind every queued event
            await self._queue.put(None)
            try:
                await asyncio.wait_for(self._task, timeout=timeout)
            except asyncio.TimeoutError:
                self._task.cancel()
                logger.warning(f"EventBus: consumer did not finish in {timeout}s, cancelled")
            self._task = None
        logger.info(f"EventBus: stopped (pending={self._queue.qsize()})")

    async def drain(self):
        """Dispatch everything currently queued on the caller's task."""
        while not self._queue.empty():
            event = self._queue.get_nowait()
            if event is not None:
                await self._dispatch(event)

    async def _consumer_loop(self):
        """Process events sequentially from the queue."""
        while True:
            try:
                event = await self._queue.get()
                if event is None:
                    break
                await self._dispatch(event)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"EventBus: consumer loop error: {e}", exc_info=True)

    async def _dispatch(self, event: Event):
        """Dispatch event to all registered handlers."""
        handlers = self._handlers.get(event.event_type, [])
        if not handlers:
            logger.debug(f"EventBus: no handlers for {event.event_type}")
            return

        for handler in handlers:
            try:
                await handler(event)
            except Exception as e:
                logger.error(
                    f"EventBus: handler {getattr(handler, '__name__', handler)} failed for {event}: {e}",
                    exc_info=True,
                )

    @property
    def pending_count(self) -> int:
        return self._queue.qsize()
