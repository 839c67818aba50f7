"""Shared fixtures for notifier tests.

Time is virtual (ManualScheduler) and provider calls run inline on the
calling thread, so tests are deterministic and never sleep.
"""

from typing import Any, Dict, List, Optional

import pytest

from notifier.events import Event, EventDispatcher
from notifier.notifications.models import Message, MessageKind, MessagePriority
from notifier.resilience.scheduler import ManualScheduler
from tests.factories.notifier import START_TIME, InlineExecutor, ScriptedProvider


@pytest.fixture
def manual_scheduler():
    """Scheduler with a virtual clock starting at START_TIME."""
    return ManualScheduler(start=START_TIME)


@pytest.fixture
def inline_executor():
    return InlineExecutor()


@pytest.fixture
def provider():
    return ScriptedProvider()


@pytest.fixture
def events():
    return EventDispatcher()


@pytest.fixture
def recorded_events(events):
    """List receiving every event dispatched through ``events``."""
    received: List[Event] = []
    events.subscribe("*", received.append)
    return received


@pytest.fixture
def message_factory():
    """Factory for creating Message instances with distinct content."""
    counter = {"n": 0}

    def _factory(
        kind: MessageKind = MessageKind.TOKEN_ALERT,
        priority: MessagePriority = MessagePriority.MEDIUM,
        title: Optional[str] = None,
        content: Optional[str] = None,
        entity_key: Optional[str] = None,
        score: Optional[float] = None,
        max_retries: int = 3,
        metadata: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> Message:
        counter["n"] += 1
        n = counter["n"]
        metadata = dict(metadata or {})
        if score is not None:
            metadata["score"] = score
        return Message(
            kind=kind,
            priority=priority,
            title=title if title is not None else f"Alert {n}",
            content=content if content is not None else f"subject{n} moved {n * 7} points",
            entity_key=entity_key,
            metadata=metadata,
            max_retries=max_retries,
            **kwargs,
        )

    return _factory
