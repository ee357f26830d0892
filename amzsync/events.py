"""
Publish/subscribe hooks for the historical sync.

Decouples the sync run from its consumers (notifications, audit, tests).
Handlers are async and isolated: one failing handler never affects the run
or the other handlers.

Usage:
    from amzsync.events import events, SyncEvent

    @events.on(SyncEvent.BATCH_COMPLETED)
    async def handle_batch(data: dict):
        print(f"Batch {data['batch']} merged {data['orders']} orders")
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Coroutine, Dict, List, Optional

from amzsync.observability import get_logger, get_correlation_id

logger = get_logger(__name__)

EventHandler = Callable[[Dict[str, Any]], Coroutine[Any, Any, None]]


class SyncEvent(Enum):
    """Events emitted during a historical sync run."""

    # Run lifecycle
    SYNC_STARTED = "sync.started"
    SYNC_COMPLETED = "sync.completed"
    SYNC_FAILED = "sync.failed"
    SYNC_STOPPED = "sync.stopped"

    # Per batch
    BATCH_COMPLETED = "batch.completed"
    BATCH_FAILED = "batch.failed"
    RATE_LIMITED = "batch.rate_limited"


@dataclass
class EventMetadata:
    """Metadata attached to every event."""

    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    correlation_id: Optional[str] = field(default_factory=get_correlation_id)
    source: str = "historical_sync"


@dataclass
class Event:
    type: SyncEvent
    data: Dict[str, Any]
    metadata: EventMetadata = field(default_factory=EventMetadata)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.type.value,
            "data": self.data,
            "metadata": {
                "timestamp": self.metadata.timestamp.isoformat(),
                "correlation_id": self.metadata.correlation_id,
                "source": self.metadata.source,
            },
        }


class EventBus:
    """
    Async event bus.

    - Multiple handlers per event, plus wildcard handlers (``on()``)
    - Handler errors are logged, never raised to the emitter
    - Bounded history for debugging and tests
    """

    def __init__(self, max_history: int = 100):
        self._handlers: Dict[SyncEvent, List[EventHandler]] = {}
        self._wildcard_handlers: List[EventHandler] = []
        self._history: List[Event] = []
        self._max_history = max_history

    def on(self, event_type: Optional[SyncEvent] = None) -> Callable[[EventHandler], EventHandler]:
        """Decorator to register a handler for ``event_type`` (None = all events)."""

        def decorator(handler: EventHandler) -> EventHandler:
            self.subscribe(event_type, handler)
            return handler

        return decorator

    def subscribe(self, event_type: Optional[SyncEvent], handler: EventHandler) -> None:
        if event_type is None:
            self._wildcard_handlers.append(handler)
        else:
            self._handlers.setdefault(event_type, []).append(handler)

    def unsubscribe(self, event_type: Optional[SyncEvent], handler: EventHandler) -> bool:
        """
        Returns:
            True if handler was found and removed
        """
        handlers = self._wildcard_handlers if event_type is None else self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    async def emit(self, event_type: SyncEvent, data: Optional[Dict[str, Any]] = None) -> Event:
        event = Event(type=event_type, data=data or {})

        self._history.append(event)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

        handlers = list(self._handlers.get(event_type, []))
        handlers.extend(self._wildcard_handlers)
        if not handlers:
            return event

        results = await asyncio.gather(
            *[handler(dict(event.data)) for handler in handlers],
            return_exceptions=True,
        )
        for handler, result in zip(handlers, results):
            if isinstance(result, Exception):
                logger.error(
                    f"Handler {handler.__name__} failed for {event_type.value}: {result}",
                    extra={"event": event.to_dict()},
                )

        return event

    def get_history(self, event_type: Optional[SyncEvent] = None, limit: int = 20) -> List[Dict[str, Any]]:
        history = self._history
        if event_type:
            history = [e for e in history if e.type == event_type]
        return [e.to_dict() for e in history[-limit:]]

    def clear_handlers(self) -> None:
        """Remove all handlers (useful for testing)."""
        self._handlers.clear()
        self._wildcard_handlers.clear()

    def clear_history(self) -> None:
        self._history.clear()


# Global event bus instance
events = EventBus()
