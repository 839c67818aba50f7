"""Resilience primitives: retry backoff and timed wakeups."""

from notifier.resilience.backoff import BackoffPolicy
from notifier.resilience.scheduler import (
    ManualScheduler,
    RepeatingHandle,
    Scheduler,
    ThreadedScheduler,
    TimerHandle,
)

__all__ = [
    "BackoffPolicy",
    "ManualScheduler",
    "RepeatingHandle",
    "Scheduler",
    "ThreadedScheduler",
    "TimerHandle",
]
