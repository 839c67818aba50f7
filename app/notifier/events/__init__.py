"""Pipeline lifecycle events."""

from notifier.events.dispatcher import EventDispatcher, EventHandler
from notifier.events.models import Event, EventType

__all__ = ["Event", "EventDispatcher", "EventHandler", "EventType"]
