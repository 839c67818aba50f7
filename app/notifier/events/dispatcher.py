"""Event dispatcher for pipeline lifecycle events.

Each pipeline owns one ``EventDispatcher``. Handlers subscribe explicitly and
are called synchronously, in registration order, on the thread that emitted
the event. A failing handler is logged and never affects the emitter or the
remaining handlers.
"""

from threading import Lock
from typing import Any, Callable, List, Optional, Tuple

from notifier.events.models import Event
from notifier.logging import get_module_logger

logger = get_module_logger()

EventHandler = Callable[[Event], Any]

WILDCARD = "*"


class EventDispatcher:
    """In-process observer list keyed by event type.

    Example:
        events = EventDispatcher()
        events.subscribe("message.failed", alert_oncall)
        events.emit("message.failed", message_id="abc", error="TIMEOUT")
    """

    def __init__(self) -> None:
        self._handlers: List[Tuple[str, EventHandler]] = []
        self._lock = Lock()

    def subscribe(self, event_type: str, handler: EventHandler) -> EventHandler:
        """Register a handler for an event type, or ``"*"`` for all events."""
        with self._lock:
            self._handlers.append((event_type, handler))
            count = len(self._handlers)
        logger.debug(
            "registered_event_handler",
            handler=getattr(handler, "__name__", "unknown"),
            event_type=event_type,
            total_handlers=count,
        )
        return handler

    def unsubscribe(self, event_type: str, handler: EventHandler) -> bool:
        with self._lock:
            for index, (registered_type, registered) in enumerate(self._handlers):
                if registered_type == event_type and registered is handler:
                    del self._handlers[index]
                    return True
        return False

    def handlers_for(self, event_type: str) -> List[EventHandler]:
        with self._lock:
            return [
                handler
                for registered_type, handler in self._handlers
                if registered_type in (event_type, WILDCARD)
            ]

    def dispatch(self, event: Event) -> List[Any]:
        """Dispatch an event to all matching handlers.

        Returns:
            List of return values from handlers that did not raise.
        """
        results = []
        handlers = self.handlers_for(event.event_type)

        logger.debug(
            "dispatching_event",
            event_type=event.event_type,
            handler_count=len(handlers),
            correlation_id=str(event.correlation_id),
        )

        for handler in handlers:
            try:
                results.append(handler(event))
            except Exception as e:  # pylint: disable=broad-except
                logger.error(
                    "event_handler_failed",
                    handler=getattr(handler, "__name__", "unknown"),
                    event_type=event.event_type,
                    error=str(e),
                    correlation_id=str(event.correlation_id),
                )

        return results

    def emit(self, event_type: str, **metadata: Any) -> Optional[Event]:
        """Build and dispatch an event. Skips construction when nobody listens."""
        if not self.handlers_for(event_type):
            return None
        event = Event(event_type=event_type, metadata=metadata)
        self.dispatch(event)
        return event

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()
